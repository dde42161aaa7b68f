"""
Logging utilities for the VeriAttend attendance system.
Includes a dedicated attendance event log and an async logging queue.
"""
import logging
import threading
import queue
import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List

class AttendanceLogger:
    """Application logger with a separate structured attendance event log."""

    def __init__(self, name: str = "veriattend"):
        self.name = name
        self.logger = logging.getLogger(name)
        self._setup_logger()

        # Attendance-specific logging
        self.attendance_logger = self._setup_attendance_logger()
        self.attendance_events: List[Dict] = []
        self.max_attendance_events = 1000
        self._events_lock = threading.Lock()

        # Async logging queue for performance
        self.log_queue = queue.Queue(maxsize=1000)
        self.log_worker_thread = threading.Thread(target=self._log_worker, daemon=True)
        self.log_worker_thread.start()

        self.logger.debug("Attendance logger initialized successfully")

    def _setup_logger(self):
        """Setup logging handlers with proper error handling."""
        try:
            # Import config here to avoid circular imports
            from veriattend.utils.config import config
            log_level = getattr(logging, config.logging.log_level.upper(), logging.INFO)
            output_dir = config.logging.output_dir

            # Clear existing handlers to avoid duplicates
            self.logger.handlers.clear()
            self.logger.setLevel(log_level)

            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )

            # Console handler
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(formatter)
            console_handler.setLevel(log_level)
            self.logger.addHandler(console_handler)

            # File handler
            try:
                log_dir = Path(output_dir) / "logs"
                log_dir.mkdir(parents=True, exist_ok=True)

                file_handler = logging.FileHandler(log_dir / "veriattend.log", encoding='utf-8')
                file_handler.setFormatter(formatter)
                file_handler.setLevel(log_level)
                self.logger.addHandler(file_handler)

            except Exception as e:
                self.logger.warning(f"Could not setup file logging: {e}")

            # Prevent propagation to root logger
            self.logger.propagate = False

        except Exception as e:
            # Fallback to basic logging
            logging.basicConfig(level=logging.INFO)
            self.logger = logging.getLogger(self.name)
            self.logger.error(f"Failed to setup logging: {e}")

    def _setup_attendance_logger(self):
        """Setup separate logger for attendance events."""
        try:
            from veriattend.utils.config import config
            output_dir = config.logging.output_dir
            log_file = config.logging.attendance_log_file

            attendance_logger = logging.getLogger(f"{self.name}.attendance")
            attendance_logger.handlers.clear()
            attendance_logger.setLevel(logging.INFO)
            attendance_logger.propagate = False

            formatter = logging.Formatter(
                '%(asctime)s - ATTENDANCE - %(levelname)s - %(message)s'
            )

            try:
                log_file_path = Path(output_dir) / "logs" / log_file
                log_file_path.parent.mkdir(parents=True, exist_ok=True)

                attendance_file_handler = logging.FileHandler(log_file_path, encoding='utf-8')
                attendance_file_handler.setFormatter(formatter)
                attendance_logger.addHandler(attendance_file_handler)

            except Exception as e:
                self.logger.warning(f"Could not setup attendance file logging: {e}")

            return attendance_logger

        except Exception as e:
            self.logger.error(f"Failed to setup attendance logging: {e}")
            return None

    def _log_worker(self):
        """Background worker for async logging."""
        while True:
            try:
                log_entry = self.log_queue.get(timeout=1.0)
                if log_entry is None:  # Shutdown signal
                    break

                level, message, kwargs = log_entry
                getattr(self.logger, level)(message, **kwargs)

            except queue.Empty:
                continue
            except Exception as e:
                # Use print to avoid infinite loop
                print(f"Log worker error: {e}")

    def _async_log(self, level: str, message: str, **kwargs):
        """Add log entry to async queue."""
        try:
            self.log_queue.put_nowait((level, message, kwargs))
        except queue.Full:
            # If queue is full, log synchronously
            getattr(self.logger, level)(message, **kwargs)

    def debug(self, message: str, **kwargs):
        self._async_log('debug', message, **kwargs)

    def info(self, message: str, **kwargs):
        self._async_log('info', message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._async_log('warning', message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error message synchronously for immediate visibility."""
        self.logger.error(message, **kwargs)

    def critical(self, message: str, **kwargs):
        self.logger.critical(message, **kwargs)

    def set_level(self, level: str):
        """Change the level of the logger and every handler it writes to."""
        numeric = getattr(logging, level.upper(), logging.INFO)
        self.logger.setLevel(numeric)
        for handler in self.logger.handlers:
            handler.setLevel(numeric)

    def log_attendance_event(self, member_id: str, event_type: str, details: Dict = None):
        """Record an attendance event in the event ring and the attendance log."""
        try:
            timestamp = datetime.now()
            event_details = details or {}

            attendance_event = {
                'timestamp': timestamp.isoformat(),
                'member_id': member_id,
                'event_type': event_type,
                'details': event_details
            }

            # Thread-safe addition to events list
            with self._events_lock:
                self.attendance_events.append(attendance_event)
                if len(self.attendance_events) > self.max_attendance_events:
                    self.attendance_events = self.attendance_events[-self.max_attendance_events:]

            message = f"Member: {member_id} | Event: {event_type}"
            if event_details:
                message += f" | Details: {json.dumps(event_details, default=str)}"

            if self.attendance_logger:
                self.attendance_logger.info(message)

            # Also log session lifecycle events to main log
            if event_type in ("SESSION_STARTED", "SESSION_ENDED", "MEMBER_REGISTERED"):
                self.info(f"ATTENDANCE - {message}")

        except Exception as e:
            self.error(f"Failed to log attendance event: {e}")

    def get_recent_attendance_events(self, hours: int = 24) -> List[Dict]:
        """Get recent attendance events within specified hours."""
        cutoff = datetime.now() - timedelta(hours=hours)

        with self._events_lock:
            return [
                event.copy() for event in self.attendance_events
                if datetime.fromisoformat(event['timestamp']) >= cutoff
            ]

    def get_attendance_summary(self, hours: int = 24) -> Dict:
        """Get attendance event counts for specified time period."""
        recent_events = self.get_recent_attendance_events(hours)

        member_counts = {}
        event_types = {}

        for event in recent_events:
            event_type = event['event_type']
            if event_type == "ARRIVAL_RECORDED":
                member_id = event['member_id']
                member_counts[member_id] = member_counts.get(member_id, 0) + 1
            event_types[event_type] = event_types.get(event_type, 0) + 1

        return {
            'time_period_hours': hours,
            'total_events': len(recent_events),
            'unique_members': len(member_counts),
            'member_arrival_counts': member_counts,
            'event_type_counts': event_types,
            'last_updated': datetime.now().isoformat()
        }

    def get_log_statistics(self) -> Dict:
        """Get logging system statistics."""
        with self._events_lock:
            attendance_events_count = len(self.attendance_events)

        return {
            'attendance_events_count': attendance_events_count,
            'log_queue_size': self.log_queue.qsize(),
            'attendance_logging_enabled': self.attendance_logger is not None
        }

    def shutdown(self):
        """Graceful shutdown of logging system."""
        try:
            # Signal log worker to stop
            self.log_queue.put(None)

            if self.log_worker_thread.is_alive():
                self.log_worker_thread.join(timeout=5.0)

            for handler in self.logger.handlers:
                handler.flush()

        except Exception as e:
            print(f"Error during logger shutdown: {e}")

# Global logger instance with error handling
try:
    logger = AttendanceLogger()
except Exception as e:
    # Fallback to basic logging
    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger("veriattend_fallback")
    logger.error(f"Failed to initialize attendance logger: {e}")
