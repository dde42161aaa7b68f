"""
Configuration settings for the VeriAttend attendance system.
Dataclass sections with environment overrides and validation.
"""
import os
import logging
from dataclasses import dataclass
from typing import Tuple
from pathlib import Path

# Configure logging for config module
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

@dataclass
class CameraConfig:
    """Camera configuration settings."""
    device_id: int = 0
    resolution: Tuple[int, int] = (640, 480)
    fps: int = 15
    buffer_size: int = 1

@dataclass
class FaceConfig:
    """Face detection and descriptor matching configuration."""
    model: str = "hog"  # hog or cnn
    tolerance: float = 0.6  # maximum descriptor distance for a match
    detection_scale: float = 0.5  # Scale down for faster detection
    descriptor_length: int = 128

@dataclass
class SessionConfig:
    """Live attendance session configuration."""
    late_threshold_minutes: int = 15
    poll_interval_seconds: float = 2.5
    frame_timeout_seconds: float = 1.0

@dataclass
class StorageConfig:
    """Key-value persistence configuration."""
    data_dir: str = "veriattend_data"
    key_prefix: str = "veriattend_"

@dataclass
class AnalysisConfig:
    """Text-analysis service configuration."""
    api_url: str = "http://localhost:3400/analyzeAttendanceData"
    api_key: str = ""
    timeout_seconds: float = 30.0

@dataclass
class LoggingConfig:
    """Logging configuration."""
    log_level: str = "INFO"
    output_dir: str = "veriattend_output"
    attendance_log_file: str = "attendance.log"
    max_attendance_events: int = 1000

class Config:
    """Main configuration class with proper error handling and validation."""

    def __init__(self):
        self.camera = CameraConfig()
        self.face = FaceConfig()
        self.session = SessionConfig()
        self.storage = StorageConfig()
        self.analysis = AnalysisConfig()
        self.logging = LoggingConfig()

        # Load environment variables
        self._load_environment_variables()

        # Validate configuration
        self._validate_configuration()

    def _load_environment_variables(self):
        """Load configuration from environment variables with proper error handling."""
        try:
            # Camera settings
            try:
                self.camera.device_id = int(os.getenv("CAMERA_ID", self.camera.device_id))
            except ValueError as e:
                logger.warning(f"Invalid camera id, using default: {e}")

            # Parse resolution if provided
            resolution_str = os.getenv("CAMERA_RESOLUTION")
            if resolution_str:
                try:
                    width, height = map(int, resolution_str.split('x'))
                    self.camera.resolution = (width, height)
                except ValueError:
                    logger.warning(f"Invalid resolution format: {resolution_str}, using default")

            # Face settings
            self.face.model = os.getenv("FACE_MODEL", self.face.model).lower()
            try:
                tolerance = float(os.getenv("FACE_TOLERANCE", self.face.tolerance))
                if not 0.0 < tolerance <= 1.0:
                    raise ValueError("Face tolerance must be between 0.0 and 1.0")
                self.face.tolerance = tolerance
            except ValueError as e:
                logger.warning(f"Invalid face tolerance, using default: {e}")

            # Session settings
            try:
                late_minutes = int(os.getenv("LATE_THRESHOLD_MINUTES", self.session.late_threshold_minutes))
                if late_minutes < 0:
                    raise ValueError("Late threshold must be non-negative")
                self.session.late_threshold_minutes = late_minutes
            except ValueError as e:
                logger.warning(f"Invalid late threshold, using default: {e}")

            try:
                interval = float(os.getenv("POLL_INTERVAL_SECONDS", self.session.poll_interval_seconds))
                if interval <= 0:
                    raise ValueError("Poll interval must be positive")
                self.session.poll_interval_seconds = interval
            except ValueError as e:
                logger.warning(f"Invalid poll interval, using default: {e}")

            # Storage
            self.storage.data_dir = os.getenv("VERIATTEND_DATA_DIR", self.storage.data_dir)

            # Text analysis service
            self.analysis.api_url = os.getenv("ANALYSIS_API_URL", self.analysis.api_url)
            self.analysis.api_key = os.getenv("ANALYSIS_API_KEY", self.analysis.api_key)

            # Logging
            self.logging.output_dir = os.getenv("VERIATTEND_OUTPUT_DIR", self.logging.output_dir)
            log_level = os.getenv("LOG_LEVEL", self.logging.log_level).upper()
            if log_level in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                self.logging.log_level = log_level
            else:
                logger.warning(f"Invalid log level: {log_level}, using default")

        except Exception as e:
            logger.error(f"Error loading environment variables: {e}")
            logger.info("Using default configuration values")

    def _validate_configuration(self):
        """Validate configuration values."""
        errors = []

        # Validate camera settings
        if self.camera.device_id < 0:
            errors.append("Camera device ID must be non-negative")

        if self.camera.fps <= 0:
            errors.append("Camera FPS must be positive")

        if any(dim <= 0 for dim in self.camera.resolution):
            errors.append("Camera resolution must have positive width and height")

        # Validate face settings
        if self.face.model not in ("hog", "cnn"):
            errors.append("Face model must be 'hog' or 'cnn'")

        if not 0.0 < self.face.tolerance <= 1.0:
            errors.append("Face tolerance must be between 0.0 and 1.0")

        if not 0.1 <= self.face.detection_scale <= 1.0:
            errors.append("Face detection scale must be between 0.1 and 1.0")

        if self.face.descriptor_length <= 0:
            errors.append("Descriptor length must be positive")

        # Validate session settings
        if self.session.late_threshold_minutes < 0:
            errors.append("Late threshold must be non-negative")

        if self.session.poll_interval_seconds <= 0:
            errors.append("Poll interval must be positive")

        if self.analysis.timeout_seconds <= 0:
            errors.append("Analysis timeout must be positive")

        if errors:
            error_msg = "Configuration validation errors:\n" + "\n".join(f"- {error}" for error in errors)
            logger.error(error_msg)
            raise ValueError(error_msg)

        logger.debug("Configuration validation passed")

    def create_directories(self):
        """Create the data and log directories if they don't exist."""
        directories = [
            self.storage.data_dir,
            self.logging.output_dir,
            os.path.join(self.logging.output_dir, "logs"),
            os.path.join(self.logging.output_dir, "reports"),
        ]

        for directory in directories:
            try:
                Path(directory).mkdir(parents=True, exist_ok=True)
                logger.debug(f"Created/verified directory: {directory}")
            except Exception as e:
                logger.warning(f"Could not create directory {directory}: {e}")

    def get_effective_config(self) -> dict:
        """Get complete effective configuration as dictionary."""
        return {
            'camera': {
                'device_id': self.camera.device_id,
                'resolution': self.camera.resolution,
                'fps': self.camera.fps,
                'buffer_size': self.camera.buffer_size
            },
            'face': {
                'model': self.face.model,
                'tolerance': self.face.tolerance,
                'detection_scale': self.face.detection_scale,
                'descriptor_length': self.face.descriptor_length
            },
            'session': {
                'late_threshold_minutes': self.session.late_threshold_minutes,
                'poll_interval_seconds': self.session.poll_interval_seconds,
                'frame_timeout_seconds': self.session.frame_timeout_seconds
            },
            'storage': {
                'data_dir': self.storage.data_dir,
                'key_prefix': self.storage.key_prefix
            },
            'analysis': {
                'api_url': self.analysis.api_url,
                'timeout_seconds': self.analysis.timeout_seconds
            },
            'logging': {
                'log_level': self.logging.log_level,
                'output_dir': self.logging.output_dir
            }
        }

# Global configuration instance with error handling
try:
    config = Config()
except Exception as e:
    logger.error(f"Failed to initialize configuration: {e}")
    # Create minimal fallback configuration
    config = Config.__new__(Config)
    config.camera = CameraConfig()
    config.face = FaceConfig()
    config.session = SessionConfig()
    config.storage = StorageConfig()
    config.analysis = AnalysisConfig()
    config.logging = LoggingConfig()
    logger.warning("Using fallback configuration")

def validate_config():
    """Validate current configuration."""
    try:
        config._validate_configuration()
        return True
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        return False

def get_config_summary():
    """Get a summary of current configuration."""
    return {
        'camera_device': config.camera.device_id,
        'camera_resolution': config.camera.resolution,
        'face_model': config.face.model,
        'face_tolerance': config.face.tolerance,
        'late_threshold_minutes': config.session.late_threshold_minutes,
        'poll_interval_seconds': config.session.poll_interval_seconds,
        'data_dir': config.storage.data_dir,
        'logging_level': config.logging.log_level
    }
