"""
Session state machine for live attendance.

States: INACTIVE -> ENTRY_ACTIVE -> (EXIT_ACTIVE) -> CLOSED, after which the
session is archived and the slot returns to INACTIVE. Only one session is
live at a time and every mutation runs under a single lock.
"""
import copy
import threading
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from veriattend.attendance.errors import SessionAlreadyActive
from veriattend.attendance.history import SessionHistory, archive_session
from veriattend.attendance.models import (
    Attendee, AttendanceStatus, HistorySession, Session, SessionState
)
from veriattend.attendance.registry import MemberRegistry
from veriattend.utils.config import config
from veriattend.utils.logger import logger


class SessionStateMachine:
    """Owns the current-session slot and appends closed sessions to history."""

    def __init__(self, registry: MemberRegistry, history: SessionHistory,
                 clock: Callable[[], datetime] = datetime.now,
                 late_threshold: timedelta = None):
        self.registry = registry
        self.history = history
        self.clock = clock
        if late_threshold is None:
            late_threshold = timedelta(minutes=config.session.late_threshold_minutes)
        self.late_threshold = late_threshold

        self._current: Optional[Session] = None
        self._lock = threading.RLock()

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._current.state if self._current else SessionState.INACTIVE

    @property
    def is_active(self) -> bool:
        return self.state != SessionState.INACTIVE

    def snapshot(self) -> Optional[Session]:
        """Copy of the live session, safe to hand to display code."""
        with self._lock:
            return copy.deepcopy(self._current)

    def restore(self, session: Session):
        """Resume a persisted live session after a restart."""
        with self._lock:
            if self._current is not None:
                raise SessionAlreadyActive()
            if not session.is_active:
                logger.warning(f"Ignoring persisted session {session.id} in state {session.state.value}")
                return
            self._current = session
        logger.info(f"Restored live session {session.id} ({session.state.value})")

    def start_session(self) -> Session:
        with self._lock:
            if self._current is not None:
                raise SessionAlreadyActive()

            self._current = Session(
                id=uuid.uuid4().hex,
                start_time=self.clock(),
                state=SessionState.ENTRY_ACTIVE,
            )
            session = copy.deepcopy(self._current)

        logger.log_attendance_event("SESSION", "SESSION_STARTED", {
            "session_id": session.id,
            "start_time": session.start_time.isoformat()
        })
        return session

    def start_exit_scan(self) -> bool:
        """Switch to exit scanning. Returns False when there is nothing to switch."""
        with self._lock:
            if self._current is None or self._current.state != SessionState.ENTRY_ACTIVE:
                return False
            self._current.state = SessionState.EXIT_ACTIVE
            session_id = self._current.id

        logger.log_attendance_event("SESSION", "EXIT_SCAN_STARTED", {"session_id": session_id})
        return True

    def end_session(self) -> Optional[HistorySession]:
        """Close the live session and prepend its snapshot to history."""
        with self._lock:
            if self._current is None:
                return None

            self._current.state = SessionState.CLOSED
            archived = archive_session(self._current, end_time=self.clock())
            self.history.prepend(archived)
            self._current = None

        logger.log_attendance_event("SESSION", "SESSION_ENDED", {
            "session_id": archived.id,
            "attendees": len(archived.attendees)
        })
        return archived

    def abort_session(self) -> bool:
        """Drop the live session without archiving it."""
        with self._lock:
            if self._current is None:
                return False
            session_id = self._current.id
            self._current = None

        logger.log_attendance_event("SESSION", "SESSION_ABORTED", {"session_id": session_id})
        return True

    def compute_status(self, session: Session, now: datetime) -> AttendanceStatus:
        if now - session.start_time > self.late_threshold:
            return AttendanceStatus.LATE
        return AttendanceStatus.ON_TIME

    def resolve_arrival(self, member_id: str) -> Optional[Attendee]:
        """
        Record a member's arrival during entry scanning.

        Repeated detections of the same member are ignored, so the first
        arrival time and status stand.

        Returns:
            The new attendee, or None when nothing was recorded
        """
        with self._lock:
            session = self._current
            if session is None or session.state != SessionState.ENTRY_ACTIVE:
                return None
            if session.find_attendee(member_id) is not None:
                return None

            member = self.registry.find_by_id(member_id)
            if member is None:
                logger.warning(f"Matched unknown member id {member_id}, ignoring")
                return None

            now = self.clock()
            attendee = Attendee(
                member_id=member.id,
                name=member.name,
                matric_number=member.matric_number,
                role=member.role,
                arrival_time=now,
                status=self.compute_status(session, now),
                avatar_ref=member.avatar_ref,
            )
            # Most recent first for the live feed
            session.attendees.insert(0, attendee)
            recorded = copy.deepcopy(attendee)

        logger.log_attendance_event(member_id, "ARRIVAL_RECORDED", {
            "session_id": session.id,
            "name": recorded.name,
            "status": recorded.status.value
        })
        return recorded

    def resolve_exit(self, member_id: str) -> Optional[Attendee]:
        """Set the exit time of an arrived member once, during exit scanning."""
        with self._lock:
            session = self._current
            if session is None or session.state != SessionState.EXIT_ACTIVE:
                return None

            attendee = session.find_attendee(member_id)
            if attendee is None or attendee.exit_time is not None:
                return None

            attendee.exit_time = self.clock()
            recorded = copy.deepcopy(attendee)

        logger.log_attendance_event(member_id, "EXIT_RECORDED", {
            "session_id": session.id,
            "name": recorded.name
        })
        return recorded
