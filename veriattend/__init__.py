"""VeriAttend: face-recognition attendance sessions."""
__version__ = "1.0.0"
