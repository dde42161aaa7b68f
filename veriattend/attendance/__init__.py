"""Attendance core: members, live sessions, history and persistence.

``AttendanceCoordinator`` lives in ``veriattend.attendance.coordinator`` and
is imported explicitly, since it pulls in the recognition package.
"""
from .errors import AttendanceError, OperationResult
from .history import SessionHistory
from .models import Attendee, HistorySession, Member, MemberRole, Session, SessionState
from .registry import MemberRegistry
from .session import SessionStateMachine
from .storage import AttendanceRepository, JsonFileStore, MemoryStore
__all__ = [
    'AttendanceError', 'OperationResult', 'SessionHistory',
    'Attendee', 'HistorySession', 'Member', 'MemberRole', 'Session', 'SessionState',
    'MemberRegistry', 'SessionStateMachine', 'AttendanceRepository', 'JsonFileStore', 'MemoryStore',
]
