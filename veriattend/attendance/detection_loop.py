"""
Polling detection loop for live sessions.

A daemon thread ticks at a fixed interval. Each tick hands one detection pass
(frame -> detections -> descriptor matches -> member ids) to a single worker.
A tick that finds a pass still in flight is skipped, so a slow or hung pass
never stacks up more work.
"""
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Optional

from veriattend.attendance.errors import NoCameraAccess
from veriattend.utils.config import config
from veriattend.utils.logger import logger


class LoopHandle:
    """Cancellation handle returned by ``DetectionLoop.start``."""

    def __init__(self, loop: "DetectionLoop"):
        self._loop = loop

    @property
    def cancelled(self) -> bool:
        return not self._loop.running

    def cancel(self):
        self._loop.stop()


class DetectionLoop:
    """Runs detection passes against the live session while it is active."""

    def __init__(self, camera, detector, matcher_provider: Callable[[], Optional[object]],
                 on_match: Callable[[str], None], interval: float = None):
        """
        Args:
            camera: object with ``open() -> bool``, ``release()`` and ``get_frame()``
            detector: object with ``detect_faces(frame)`` returning detections
                that carry an ``encoding``
            matcher_provider: returns the current matcher, or None when no
                descriptors are registered
            on_match: receives the member id of every accepted match
            interval: seconds between ticks
        """
        self.camera = camera
        self.detector = detector
        self.matcher_provider = matcher_provider
        self.on_match = on_match
        self.interval = interval or config.session.poll_interval_seconds

        self.running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._in_flight = threading.Lock()
        self._pending: Optional[Future] = None
        self._worker: Optional[threading.Thread] = None
        self._state_lock = threading.Lock()

        self.stats = {
            'ticks': 0,
            'skipped_ticks': 0,
            'passes': 0,
            'detections': 0,
            'matches': 0,
            'errors': 0,
        }

    def start(self) -> LoopHandle:
        """
        Acquire the camera and begin polling.

        Raises:
            NoCameraAccess: the camera could not be opened
        """
        with self._state_lock:
            if self.running:
                return LoopHandle(self)

            if not self.camera.open():
                raise NoCameraAccess()

            try:
                self._stop_event.clear()
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="detection")
                self._thread = threading.Thread(target=self._run, name="detection-loop", daemon=True)
                self.running = True
                self._thread.start()
            except Exception:
                self.running = False
                if self._executor:
                    self._executor.shutdown(wait=False)
                    self._executor = None
                self.camera.release()
                raise

        logger.info(f"Detection loop started (interval {self.interval}s)")
        return LoopHandle(self)

    def stop(self):
        """Cancel polling and release the camera. Safe to call repeatedly."""
        with self._state_lock:
            if not self.running:
                return
            self.running = False
            self._stop_event.set()
            thread, executor = self._thread, self._executor
            self._thread = None
            self._executor = None

        try:
            if thread and thread is not threading.current_thread():
                thread.join(timeout=self.interval + 1.0)
            if executor:
                # Let an in-flight pass finish its writes unless we are that pass
                executor.shutdown(wait=threading.current_thread() is not self._worker)
        finally:
            self.camera.release()

        logger.info(f"Detection loop stopped: {self.get_statistics()}")

    def _run(self):
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(self.interval)

    def tick(self) -> bool:
        """Dispatch one detection pass unless one is already in flight."""
        self.stats['ticks'] += 1

        if not self._in_flight.acquire(blocking=False):
            self.stats['skipped_ticks'] += 1
            logger.debug("Detection pass still in flight, skipping tick")
            return False

        executor = self._executor
        if executor is None:
            self._in_flight.release()
            return False

        try:
            self._pending = executor.submit(self._guarded_pass)
        except RuntimeError:
            # Executor shut down between the check and the submit
            self._in_flight.release()
            return False
        return True

    def _guarded_pass(self) -> int:
        self._worker = threading.current_thread()
        try:
            return self.run_once()
        except Exception as e:
            self.stats['errors'] += 1
            logger.error(f"Detection pass failed: {e}")
            return 0
        finally:
            self._in_flight.release()

    def run_once(self) -> int:
        """
        Run one detection pass synchronously.

        Returns:
            Number of matched member ids forwarded to ``on_match``
        """
        start_time = time.time()
        self.stats['passes'] += 1

        frame = self.camera.get_frame()
        if frame is None:
            return 0

        detections = self.detector.detect_faces(frame)
        self.stats['detections'] += len(detections)
        if not detections:
            return 0

        matcher = self.matcher_provider()
        if matcher is None:
            # No descriptors registered: every face is unknown
            return 0

        forwarded = 0
        for detection in detections:
            encoding = getattr(detection, 'encoding', None)
            if encoding is None:
                continue

            match = matcher.match(encoding)
            if match is None:
                continue

            self.on_match(match.member_id)
            forwarded += 1

        self.stats['matches'] += forwarded
        logger.debug(
            f"Detection pass: {len(detections)} faces, {forwarded} matched "
            f"in {time.time() - start_time:.3f}s"
        )
        return forwarded

    def wait_for_pass(self, timeout: float = None) -> Optional[int]:
        """Block until the most recently dispatched pass finishes."""
        pending = self._pending
        if pending is None:
            return None
        return pending.result(timeout=timeout)

    def get_statistics(self) -> Dict:
        return dict(self.stats, running=self.running, interval=self.interval)
