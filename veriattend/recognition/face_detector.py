"""
Face detection and descriptor extraction using the face_recognition library.
"""
import cv2
import numpy as np
import face_recognition
from typing import List, Tuple, Dict, Optional
import time
import threading

from veriattend.utils.config import config
from veriattend.utils.logger import logger

class FaceDetection:
    """A detected face with its 128-d descriptor."""

    def __init__(self, bbox: Tuple[int, int, int, int], encoding: np.ndarray = None,
                 confidence: float = 1.0):
        if len(bbox) != 4:
            raise ValueError("bbox must have 4 elements: (top, right, bottom, left)")

        self.bbox = bbox  # (top, right, bottom, left)
        self.encoding = encoding
        self.confidence = max(0.0, min(1.0, confidence))
        self.timestamp = time.time()

        self.top, self.right, self.bottom, self.left = bbox
        self.width = max(0, self.right - self.left)
        self.height = max(0, self.bottom - self.top)

class FaceDetector:
    """Face detector producing descriptors for the matcher."""

    def __init__(self, model: str = None, detection_scale: float = None):
        self.model = model or config.face.model
        self.detection_scale = detection_scale or config.face.detection_scale

        # Performance tracking
        self.detection_times = []
        self.encoding_times = []
        self.total_detections = 0
        self._stats_lock = threading.Lock()

        self.models_loaded = False
        self._initialize_detector()

    def _initialize_detector(self):
        """Warm up the detection and encoding models once."""
        test_image = np.zeros((100, 100, 3), dtype=np.uint8)
        try:
            face_recognition.face_locations(test_image, model=self.model)
        except Exception as e:
            if self.model == "cnn":
                logger.warning(f"CNN model failed, falling back to HOG: {e}")
                self.model = "hog"
                try:
                    face_recognition.face_locations(test_image, model=self.model)
                except Exception as e:
                    logger.error(f"Failed to initialize face detector: {e}")
                    return
            else:
                logger.error(f"Failed to initialize face detector: {e}")
                return

        self.models_loaded = True
        logger.info(f"Face detector initialized with model: {self.model}")

    @property
    def is_ready(self) -> bool:
        return self.models_loaded

    def detect_faces(self, frame: np.ndarray, return_encodings: bool = True) -> List[FaceDetection]:
        """
        Detect faces in a BGR frame.

        Args:
            frame: Input frame as numpy array
            return_encodings: Whether to compute face descriptors

        Returns:
            List of FaceDetection objects
        """
        if frame is None or frame.size == 0:
            logger.warning("Invalid frame provided to detect_faces")
            return []

        if len(frame.shape) != 3 or frame.shape[2] != 3:
            logger.warning(f"Invalid frame shape: {frame.shape}")
            return []

        start_time = time.time()
        height, width = frame.shape[:2]

        # Scale down image for faster detection
        scale_factor = 1.0
        small_frame = frame
        if self.detection_scale < 1.0:
            new_width = int(width * self.detection_scale)
            new_height = int(height * self.detection_scale)
            if new_width > 0 and new_height > 0:
                small_frame = cv2.resize(frame, (new_width, new_height))
                scale_factor = 1.0 / self.detection_scale

        # face_recognition expects RGB
        rgb_frame = cv2.cvtColor(small_frame, cv2.COLOR_BGR2RGB)
        face_locations = face_recognition.face_locations(rgb_frame, model=self.model)

        encodings = []
        if return_encodings and face_locations:
            encoding_start = time.time()
            encodings = face_recognition.face_encodings(rgb_frame, face_locations)
            with self._stats_lock:
                self.encoding_times.append(time.time() - encoding_start)

        detections = []
        for index, (top, right, bottom, left) in enumerate(face_locations):
            # Scale back to original coordinates
            if scale_factor != 1.0:
                top = max(0, min(height, int(top * scale_factor)))
                right = max(0, min(width, int(right * scale_factor)))
                bottom = max(0, min(height, int(bottom * scale_factor)))
                left = max(0, min(width, int(left * scale_factor)))

            # Confidence from face size
            face_area = (right - left) * (bottom - top)
            confidence = min(1.0, face_area / (50 * 50))

            detections.append(FaceDetection(
                bbox=(top, right, bottom, left),
                encoding=encodings[index] if index < len(encodings) else None,
                confidence=confidence
            ))

        with self._stats_lock:
            self.detection_times.append(time.time() - start_time)
            self.total_detections += len(detections)

            if len(self.detection_times) > 100:
                self.detection_times = self.detection_times[-100:]
            if len(self.encoding_times) > 100:
                self.encoding_times = self.encoding_times[-100:]

        return detections

    def encode_image(self, image_path: str) -> Optional[List[float]]:
        """Descriptor of the single face in an enrolment photo, or None."""
        image = face_recognition.load_image_file(image_path)
        encodings = face_recognition.face_encodings(image)

        if not encodings:
            logger.warning(f"No face found in {image_path}")
            return None

        if len(encodings) > 1:
            logger.warning(f"Multiple faces found in {image_path}, using first one")

        return [float(v) for v in encodings[0]]

    def get_detection_statistics(self) -> Dict:
        """Get face detection performance statistics."""
        with self._stats_lock:
            avg_detection_time = np.mean(self.detection_times) if self.detection_times else 0
            avg_encoding_time = np.mean(self.encoding_times) if self.encoding_times else 0

            return {
                'total_detections': self.total_detections,
                'average_detection_time_ms': avg_detection_time * 1000,
                'average_encoding_time_ms': avg_encoding_time * 1000,
                'model': self.model,
                'detection_scale': self.detection_scale,
                'models_loaded': self.models_loaded
            }
