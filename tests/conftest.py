import os
import tempfile
import threading
from datetime import datetime, timedelta
from types import SimpleNamespace

# Logs and data go to a scratch directory before any veriattend module is imported
_SCRATCH = tempfile.mkdtemp(prefix="veriattend-tests-")
os.environ.setdefault("VERIATTEND_OUTPUT_DIR", os.path.join(_SCRATCH, "output"))
os.environ.setdefault("VERIATTEND_DATA_DIR", os.path.join(_SCRATCH, "data"))

import pytest  # noqa: E402

from veriattend.attendance.history import SessionHistory  # noqa: E402
from veriattend.attendance.registry import MemberRegistry  # noqa: E402
from veriattend.attendance.session import SessionStateMachine  # noqa: E402
from veriattend.attendance.storage import AttendanceRepository, MemoryStore  # noqa: E402

DESCRIPTOR_LENGTH = 128
T0 = datetime(2024, 7, 21, 9, 0, 0)


def one_hot(index: int, length: int = DESCRIPTOR_LENGTH):
    """Unit descriptor; distinct indices are sqrt(2) apart, far beyond tolerance."""
    values = [0.0] * length
    values[index] = 1.0
    return values


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set_offset(self, **kwargs):
        self.now = T0 + timedelta(**kwargs)
        return self.now


class FakeCamera:
    def __init__(self, available: bool = True, opens: bool = True, frame="frame"):
        self.available = available
        self.opens = opens
        self.frame = frame
        self.open_calls = 0
        self.release_calls = 0
        self.running = False

    def is_available(self) -> bool:
        return self.available

    def open(self) -> bool:
        self.open_calls += 1
        self.running = self.opens
        return self.opens

    def release(self):
        self.release_calls += 1
        self.running = False

    def get_frame(self, timeout=None):
        return self.frame


class FakeDetector:
    def __init__(self, encodings=(), ready: bool = True):
        self.encodings = list(encodings)
        self.is_ready = ready
        self.calls = 0

    def detect_faces(self, frame):
        self.calls += 1
        return [SimpleNamespace(encoding=e) for e in self.encodings]

    def get_detection_statistics(self):
        return {"total_detections": self.calls * len(self.encodings), "models_loaded": self.is_ready}


class BlockingDetector(FakeDetector):
    """Holds a detection pass open until ``release`` is set."""

    def __init__(self, encodings=()):
        super().__init__(encodings)
        self.entered = threading.Event()
        self.release = threading.Event()

    def detect_faces(self, frame):
        self.entered.set()
        self.release.wait(timeout=5.0)
        return super().detect_faces(frame)


class FailingStore(MemoryStore):
    """Accepts reads, rejects every write."""

    def set(self, key, value):
        raise OSError("disk full")

    def delete(self, key):
        raise OSError("disk full")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def repository(store):
    return AttendanceRepository(store)


@pytest.fixture
def registry(repository, clock):
    return MemberRegistry(repository, clock=clock)


@pytest.fixture
def history():
    return SessionHistory()


@pytest.fixture
def machine(registry, history, clock):
    return SessionStateMachine(registry, history, clock=clock)


@pytest.fixture
def students(registry):
    """Two students with descriptors and one without."""
    ada = registry.add_member({"name": "Ada Obi", "role": "student", "matric_number": "CSC/001",
                               "face_descriptor": one_hot(0), "avatar_ref": "ada.png"})
    ben = registry.add_member({"name": "Ben Eze", "role": "student", "matric_number": "CSC/002",
                               "face_descriptor": one_hot(1)})
    cal = registry.add_member({"name": "Cal Ude", "role": "staff", "matric_number": "STF/001"})
    return SimpleNamespace(ada=ada, ben=ben, cal=cal)
