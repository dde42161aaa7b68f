"""
Descriptor matching against the registered members' face descriptors.
Best match by Euclidean distance, accepted below the configured tolerance.
"""
import threading
import time
import numpy as np
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from veriattend.attendance.errors import MatcherUnavailable
from veriattend.attendance.models import Member
from veriattend.utils.config import config
from veriattend.utils.logger import logger

@dataclass
class KnownDescriptor:
    """A labelled descriptor in the matcher corpus."""
    member_id: str
    name: str
    descriptor: np.ndarray
    last_seen: float = 0
    recognition_count: int = 0

@dataclass(frozen=True)
class FaceMatch:
    """Result of matching one detected descriptor."""
    member_id: str
    distance: float

    @property
    def confidence(self) -> float:
        return max(0.0, 1.0 - self.distance)

class DescriptorMatcher:
    """Matches detected face descriptors to member ids."""

    def __init__(self, known: Sequence[KnownDescriptor], tolerance: float = None):
        if not known:
            raise MatcherUnavailable()

        self.known_faces: Dict[str, KnownDescriptor] = {k.member_id: k for k in known}
        self.tolerance = config.face.tolerance if tolerance is None else tolerance

        # Stacked corpus for vectorised distance computation
        self.face_ids: List[str] = list(self.known_faces.keys())
        self.face_encodings = np.vstack([self.known_faces[i].descriptor for i in self.face_ids])

        # Performance tracking
        self.matching_times: List[float] = []
        self.recognition_history: List[Dict] = []
        self._stats_lock = threading.Lock()

        logger.info(f"Descriptor matcher built with {len(self.face_ids)} known faces")

    @classmethod
    def from_members(cls, members: Sequence[Member], tolerance: float = None) -> "DescriptorMatcher":
        known = [
            KnownDescriptor(
                member_id=m.id,
                name=m.name,
                descriptor=np.asarray(m.face_descriptor, dtype=np.float64)
            )
            for m in members if m.has_descriptor
        ]
        return cls(known, tolerance)

    def __len__(self) -> int:
        return len(self.face_ids)

    def face_distances(self, descriptor) -> np.ndarray:
        """Euclidean distance from the descriptor to every known face."""
        descriptor = np.asarray(descriptor, dtype=np.float64)
        return np.linalg.norm(self.face_encodings - descriptor, axis=1)

    def match(self, descriptor) -> Optional[FaceMatch]:
        """Best match for a descriptor, or None for an unknown face."""
        if descriptor is None:
            return None

        start_time = time.time()
        distances = self.face_distances(descriptor)
        best_index = int(np.argmin(distances))
        best_distance = float(distances[best_index])

        result = None
        if best_distance < self.tolerance:
            member_id = self.face_ids[best_index]
            result = FaceMatch(member_id=member_id, distance=best_distance)

            known_face = self.known_faces[member_id]
            known_face.last_seen = time.time()
            known_face.recognition_count += 1

            logger.debug(f"Face matched: {known_face.name} (confidence: {result.confidence:.3f})")

        with self._stats_lock:
            self.matching_times.append(time.time() - start_time)
            if result:
                self.recognition_history.append({
                    'timestamp': time.time(),
                    'member_id': result.member_id,
                    'distance': result.distance
                })

            # Clean up old data
            if len(self.matching_times) > 100:
                self.matching_times = self.matching_times[-100:]
            if len(self.recognition_history) > 1000:
                self.recognition_history = self.recognition_history[-1000:]

        return result

    def find_similar_faces(self, descriptor, top_k: int = 5) -> List[FaceMatch]:
        """The closest known faces regardless of tolerance."""
        distances = self.face_distances(descriptor)
        return [
            FaceMatch(member_id=self.face_ids[i], distance=float(distances[i]))
            for i in np.argsort(distances)[:top_k]
        ]

    def get_recognition_statistics(self) -> Dict:
        """Get face matching performance statistics."""
        with self._stats_lock:
            avg_matching_time = float(np.mean(self.matching_times)) if self.matching_times else 0.0
            recent = [r for r in self.recognition_history if time.time() - r['timestamp'] < 3600]

        return {
            'total_known_faces': len(self.face_ids),
            'average_matching_time_ms': avg_matching_time * 1000,
            'tolerance': self.tolerance,
            'recent_recognitions_count': len(recent)
        }

class MatcherCache:
    """Rebuilds the matcher whenever the member registry changes."""

    def __init__(self, registry, tolerance: float = None):
        self.registry = registry
        self.tolerance = tolerance
        self._matcher: Optional[DescriptorMatcher] = None
        self._built_version: Optional[int] = None
        self._lock = threading.Lock()

    def get(self) -> Optional[DescriptorMatcher]:
        """Current matcher, or None when no member has a face descriptor."""
        with self._lock:
            version = self.registry.version
            if self._built_version != version:
                try:
                    self._matcher = DescriptorMatcher.from_members(
                        self.registry.biometric_members(), self.tolerance
                    )
                except MatcherUnavailable:
                    self._matcher = None
                    logger.warning("No member face descriptors, matching is unavailable")
                self._built_version = version
            return self._matcher
