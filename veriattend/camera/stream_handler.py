"""
Camera stream handler for live attendance capture.
Frames are read on a background thread into a single-slot queue.
"""
import cv2
import time
import numpy as np
from typing import Optional, Tuple
import threading
from queue import Queue, Empty

from veriattend.utils.config import config
from veriattend.utils.logger import logger

class CameraStream:
    """Threaded webcam capture with explicit open/release."""

    def __init__(self, device_id: int = None, resolution: Tuple[int, int] = None):
        self.device_id = config.camera.device_id if device_id is None else device_id
        self.resolution = resolution or config.camera.resolution

        self.cap: Optional[cv2.VideoCapture] = None
        self.frame_queue = Queue(maxsize=config.camera.buffer_size)
        self.running = False
        self.capture_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

        self._fps_counter = 0
        self._fps_start_time = time.time()
        self._current_fps = 0

    def _initialize_camera(self) -> bool:
        """Initialize camera with optimal settings."""
        try:
            self.cap = cv2.VideoCapture(self.device_id)

            if not self.cap.isOpened():
                raise RuntimeError(f"Cannot open camera {self.device_id}")

            self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.resolution[0])
            self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.resolution[1])
            self.cap.set(cv2.CAP_PROP_FPS, config.camera.fps)
            self.cap.set(cv2.CAP_PROP_BUFFERSIZE, config.camera.buffer_size)

            actual_width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
            actual_height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
            logger.info(f"Camera initialized: {actual_width}x{actual_height}")
            return True

        except Exception as e:
            logger.error(f"Failed to initialize camera: {e}")
            if self.cap is not None:
                self.cap.release()
                self.cap = None
            return False

    def _capture_frames(self):
        """Background thread for frame capture."""
        frame_time = 1.0 / config.camera.fps

        while self.running:
            try:
                ret, frame = self.cap.read()
                if not ret:
                    logger.warning("Failed to capture frame")
                    time.sleep(frame_time)
                    continue

                # Keep only the latest frame
                if self.frame_queue.full():
                    try:
                        self.frame_queue.get_nowait()
                    except Empty:
                        pass

                self.frame_queue.put(frame)
                time.sleep(frame_time)

            except Exception as e:
                logger.error(f"Error in capture thread: {e}")
                break

    def open(self) -> bool:
        """Acquire the camera and start capturing."""
        with self._lock:
            if self.running:
                return True

            if self.cap is None or not self.cap.isOpened():
                if not self._initialize_camera():
                    return False

            self.running = True
            self.capture_thread = threading.Thread(target=self._capture_frames, daemon=True)
            self.capture_thread.start()

        logger.info("Camera stream started")
        return True

    def release(self):
        """Stop capturing and release the device. Safe to call repeatedly."""
        with self._lock:
            self.running = False

            if self.capture_thread and self.capture_thread.is_alive():
                self.capture_thread.join(timeout=2.0)
            self.capture_thread = None

            if self.cap:
                self.cap.release()
                self.cap = None

            while not self.frame_queue.empty():
                try:
                    self.frame_queue.get_nowait()
                except Empty:
                    break

        logger.info("Camera stream stopped")

    def get_frame(self, timeout: float = None) -> Optional[np.ndarray]:
        """Get the latest frame from the stream."""
        if not self.running:
            return None

        timeout = config.session.frame_timeout_seconds if timeout is None else timeout
        try:
            frame = self.frame_queue.get(timeout=timeout)
            self._update_fps()
            return frame
        except Empty:
            logger.warning("Frame timeout")
            return None

    def _update_fps(self):
        self._fps_counter += 1
        current_time = time.time()

        if current_time - self._fps_start_time >= 1.0:
            self._current_fps = self._fps_counter
            self._fps_counter = 0
            self._fps_start_time = current_time

    def is_available(self) -> bool:
        """Probe whether the device can be opened, without keeping it."""
        if self.running:
            return True
        cap = cv2.VideoCapture(self.device_id)
        try:
            return cap.isOpened()
        finally:
            cap.release()

    def get_camera_info(self) -> dict:
        """Get camera information."""
        if not self.cap:
            return {"device_id": self.device_id, "running": False}

        return {
            "device_id": self.device_id,
            "width": int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            "height": int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            "fps": int(self.cap.get(cv2.CAP_PROP_FPS)),
            "processing_fps": self._current_fps,
            "running": self.running
        }

    def __enter__(self):
        if not self.open():
            raise RuntimeError(f"Cannot open camera {self.device_id}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
