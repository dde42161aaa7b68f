"""Camera handling module for live attendance."""
from .stream_handler import CameraStream
__all__ = ['CameraStream']
