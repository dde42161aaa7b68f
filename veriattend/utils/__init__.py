"""Utility modules for the attendance system."""
from .config import config, Config
from .logger import logger, AttendanceLogger
__all__ = ['config', 'Config', 'logger', 'AttendanceLogger']
