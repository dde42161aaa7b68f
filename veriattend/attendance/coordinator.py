"""
Attendance coordinator.

Owns the member registry, the session state machine, the history archive,
the persistence repository and the detection loop, and exposes every
operation as an ``OperationResult`` so that callers never see an uncaught
attendance error.
"""
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from veriattend.attendance.analysis import AttendanceAnalyzer, flatten_attendance
from veriattend.attendance.detection_loop import DetectionLoop, LoopHandle
from veriattend.attendance.errors import (
    AttendanceError, ModelsNotLoaded, NoActiveSession, NoBiometricMembers,
    NoCameraAccess, NoMembersRegistered, OperationResult, PersistenceWriteFailure,
)
from veriattend.attendance.export import build_session_report, export_session_report
from veriattend.attendance.history import SessionHistory
from veriattend.attendance.models import Member, SessionState
from veriattend.attendance.registry import MemberRegistry
from veriattend.attendance.session import SessionStateMachine
from veriattend.attendance.storage import AttendanceRepository, KeyValueStore, MemoryStore
from veriattend.recognition.face_matcher import MatcherCache
from veriattend.utils.config import config
from veriattend.utils.logger import logger


class AttendanceCoordinator:
    """Single owner of the live attendance state."""

    def __init__(self, store: KeyValueStore = None, camera=None, detector=None,
                 analyzer: AttendanceAnalyzer = None,
                 clock: Callable[[], datetime] = datetime.now,
                 poll_interval: float = None, tolerance: float = None):
        self.repository = AttendanceRepository(store if store is not None else MemoryStore())
        self.clock = clock
        self.camera = camera
        self.detector = detector
        self.analyzer = analyzer
        self.poll_interval = poll_interval or config.session.poll_interval_seconds

        self.registry = MemberRegistry(self.repository, clock=clock)
        self.history = SessionHistory.from_records(self.repository.load_history_records())
        self.sessions = SessionStateMachine(self.registry, self.history, clock=clock)
        self.matchers = MatcherCache(self.registry, tolerance)

        self._loop: Optional[DetectionLoop] = None
        self._loop_handle: Optional[LoopHandle] = None
        self._lock = threading.RLock()
        self._logged_in: Optional[Member] = None

        self._restore_state()

    def _restore_state(self):
        persisted = self.repository.load_current_session()
        if persisted is not None:
            self.sessions.restore(persisted)

        user_id = self.repository.load_logged_in_user_id()
        if user_id:
            self._logged_in = self.registry.find_by_id(user_id)

    def _persist(self, action: Callable[[], None], what: str):
        try:
            action()
        except PersistenceWriteFailure as e:
            # In-memory state stays authoritative for this process
            logger.error(f"Could not persist {what}: {e.message}")

    def _persist_current_session(self):
        self._persist(lambda: self.repository.save_current_session(self.sessions.snapshot()),
                      "current session")

    # Members

    def register_member(self, name: str, role: str, matric_number: str = None,
                        password: str = None, avatar_ref: str = None,
                        face_descriptor: List[float] = None) -> OperationResult:
        try:
            member = self.registry.add_member({
                "name": name,
                "role": role,
                "matric_number": matric_number,
                "password": password,
                "avatar_ref": avatar_ref,
                "face_descriptor": face_descriptor,
            })
        except AttendanceError as e:
            logger.warning(f"Registration rejected: {e.message}")
            return OperationResult.failure(e)
        return OperationResult.ok(f"Member {member.name} registered successfully!", data=member)

    def login(self, identifier: str, password: str, role: str) -> OperationResult:
        member = self.registry.authenticate(identifier, password, role)
        if member is None:
            return OperationResult(success=False, message="Invalid credentials. Please try again.",
                                   error="INVALID_CREDENTIALS")
        self._logged_in = member
        self._persist(lambda: self.repository.save_logged_in_user_id(member.id), "logged in user")
        return OperationResult.ok("Login successful!", data=member)

    def logout(self) -> OperationResult:
        self._logged_in = None
        self._persist(lambda: self.repository.save_logged_in_user_id(None), "logged in user")
        return OperationResult.ok("Logged out.")

    @property
    def logged_in_user(self) -> Optional[Member]:
        return self._logged_in

    # Session lifecycle

    def preflight(self):
        """
        Checks that must pass before a session can start.

        Raises:
            NoCameraAccess, ModelsNotLoaded, NoMembersRegistered, NoBiometricMembers
        """
        if self.camera is None or not self.camera.is_available():
            raise NoCameraAccess()
        if self.detector is None or not getattr(self.detector, "is_ready", False):
            raise ModelsNotLoaded()
        if not self.registry.non_admin_members():
            raise NoMembersRegistered()
        if not self.registry.biometric_members():
            raise NoBiometricMembers()

    def start_session(self) -> OperationResult:
        with self._lock:
            try:
                self.preflight()
                session = self.sessions.start_session()
            except AttendanceError as e:
                logger.warning(f"Cannot start session: {e.message}")
                return OperationResult.failure(e)

            try:
                self._start_loop()
            except AttendanceError as e:
                # Roll the slot back so a failed start leaves no live session
                self.sessions.abort_session()
                logger.warning(f"Session start aborted: {e.message}")
                return OperationResult.failure(e)

            self._persist_current_session()
            return OperationResult.ok("Attendance session started.", data=session)

    def resume_detection(self) -> OperationResult:
        """Restart the detection loop for a live session restored from storage."""
        with self._lock:
            if not self.sessions.is_active:
                return OperationResult.failure(NoActiveSession())
            try:
                self.preflight()
                self._start_loop()
            except AttendanceError as e:
                return OperationResult.failure(e)
            return OperationResult.ok("Detection resumed.", data=self.sessions.snapshot())

    def _start_loop(self):
        if self._loop is not None and self._loop.running:
            return
        self._loop = DetectionLoop(
            camera=self.camera,
            detector=self.detector,
            matcher_provider=self.matchers.get,
            on_match=self.handle_match,
            interval=self.poll_interval,
        )
        self._loop_handle = self._loop.start()

    def _stop_loop(self):
        """Cancel detection. Call without holding the lock so an in-flight match can finish."""
        with self._lock:
            handle = self._loop_handle
            self._loop_handle = None
            self._loop = None
        if handle is not None:
            handle.cancel()

    def start_exit_scan(self) -> OperationResult:
        with self._lock:
            if not self.sessions.start_exit_scan():
                return OperationResult.failure(NoActiveSession("No entry scan is running."))
            self._persist_current_session()
            return OperationResult.ok("Exit scan started.", data=self.sessions.snapshot())

    def end_session(self) -> OperationResult:
        self._stop_loop()
        with self._lock:
            archived = self.sessions.end_session()
            if archived is None:
                return OperationResult.failure(NoActiveSession())

            self._persist(lambda: self.repository.save_history_records(self.history.to_records()),
                          "session history")
            self._persist(lambda: self.repository.save_current_session(None), "current session")
            return OperationResult.ok(
                f"Session ended with {len(archived.attendees)} attendees.", data=archived
            )

    def handle_match(self, member_id: str):
        """Route a recognised member to arrival or exit handling by session state."""
        with self._lock:
            state = self.sessions.state
            if state == SessionState.ENTRY_ACTIVE:
                recorded = self.sessions.resolve_arrival(member_id)
            elif state == SessionState.EXIT_ACTIVE:
                recorded = self.sessions.resolve_exit(member_id)
            else:
                return None

            if recorded is not None and self.sessions.is_active:
                self._persist_current_session()
            return recorded

    @property
    def current_session(self):
        return self.sessions.snapshot()

    @property
    def session_history(self):
        return self.history.sessions

    # Reporting

    def member_summary(self, member_id: str, recent_limit: int = 5) -> OperationResult:
        member = self.registry.find_by_id(member_id)
        if member is None:
            return OperationResult(success=False, message="Member not found.", error="MEMBER_NOT_FOUND")
        summary = self.history.member_summary(member, recent_limit)
        return OperationResult.ok("Member summary ready.", data=summary)

    def session_report(self, session_id: str = None):
        session = self.history.find(session_id) if session_id else self.history.latest()
        if session is None:
            return None
        return build_session_report(session, self.registry.members)

    def export_session(self, output_path: str, session_id: str = None) -> OperationResult:
        session = self.history.find(session_id) if session_id else self.history.latest()
        if session is None:
            return OperationResult(success=False, message="No closed session to export.",
                                   error="SESSION_NOT_FOUND")
        try:
            path = export_session_report(session, self.registry.members, output_path)
        except (OSError, ValueError) as e:
            logger.error(f"Export failed: {e}")
            return OperationResult(success=False, message=f"Export failed: {e}", error="EXPORT_FAILED")
        return OperationResult.ok(f"Report written to {path}", data=path)

    def analyze(self, query: str, session_id: str = None) -> OperationResult:
        """Ask the analysis service about the live session, or a closed one."""
        if self.analyzer is None:
            self.analyzer = AttendanceAnalyzer()

        if session_id:
            session = self.history.find(session_id)
        else:
            session = self.sessions.snapshot() or self.history.latest()
        attendees = session.attendees if session else []

        try:
            analysis = self.analyzer.analyze(query, flatten_attendance(attendees))
        except AttendanceError as e:
            return OperationResult.failure(e)
        return OperationResult.ok("Analysis complete.", data=analysis)

    def get_status(self) -> Dict:
        session = self.sessions.snapshot()
        return {
            "state": self.sessions.state.value,
            "session_id": session.id if session else None,
            "attendees": len(session.attendees) if session else 0,
            "members": len(self.registry),
            "history_sessions": len(self.history),
            "detection": self._loop.get_statistics() if self._loop else None,
            "camera": self.camera.get_camera_info() if hasattr(self.camera, "get_camera_info") else None,
            "detector": (self.detector.get_detection_statistics()
                         if hasattr(self.detector, "get_detection_statistics") else None),
            "events": logger.get_attendance_summary(hours=24),
        }

    def shutdown(self):
        """Stop detection and release the camera. The live session stays persisted."""
        self._stop_loop()
        with self._lock:
            self._persist_current_session()
