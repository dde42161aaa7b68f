"""
Session history: archival projection and the most-recent-first archive.

``project_attendee`` is the only place attendee records are reduced to their
history-safe shape, both when archiving a live session and when loading
stored history.
"""
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from veriattend.attendance.models import (
    Attendee, AttendanceStatus, HistoryAttendee, HistorySession, Member, MemberRole, Session,
    parse_stored_time,
)
from veriattend.utils.logger import logger

HISTORY_FIELDS = ("memberId", "name", "matricNumber", "memberType", "arrivalTime", "status", "exitTime")


def project_attendee(record: Union[Attendee, HistoryAttendee, Mapping[str, Any]],
                     day: Optional[datetime] = None) -> HistoryAttendee:
    """
    Reduce an attendee to the history-safe fields, dropping images and descriptors.

    ``day`` places clock-only times (``"09:03 AM"``) from older records.
    """
    if isinstance(record, HistoryAttendee):
        return record
    if isinstance(record, Attendee):
        return HistoryAttendee(
            member_id=record.member_id,
            name=record.name,
            matric_number=record.matric_number,
            role=record.role,
            arrival_time=record.arrival_time,
            status=record.status,
            exit_time=record.exit_time,
        )

    # Stored records from older versions used ``id`` and ``time``
    member_id = record.get("memberId", record.get("id"))
    arrival = record["arrivalTime"] if "arrivalTime" in record else record["time"]
    exit_time = record.get("exitTime")
    return HistoryAttendee(
        member_id=str(member_id),
        name=record["name"],
        matric_number=record.get("matricNumber"),
        role=MemberRole(record.get("memberType", MemberRole.STUDENT.value)),
        arrival_time=parse_stored_time(arrival, day),
        status=AttendanceStatus(record["status"]),
        exit_time=parse_stored_time(exit_time, day),
    )


def archive_session(session: Session, end_time: datetime) -> HistorySession:
    """Build the immutable history snapshot of a closed session."""
    return HistorySession(
        id=session.id,
        start_time=session.start_time,
        end_time=end_time,
        attendees=tuple(project_attendee(a) for a in session.attendees),
    )


def session_from_record(record: Mapping[str, Any]) -> HistorySession:
    start_time = parse_stored_time(record["startTime"])
    if start_time is None:
        raise ValueError("History record has no start time")
    end_time = parse_stored_time(record.get("endTime"), start_time)
    return HistorySession(
        id=str(record["id"]),
        start_time=start_time,
        end_time=end_time or start_time,
        attendees=tuple(project_attendee(a, start_time) for a in record.get("attendees", [])),
    )


@dataclass(frozen=True)
class MemberAttendanceRecord:
    date: str
    status: str  # Present / Absent
    arrival_time: Optional[datetime]
    exit_time: Optional[datetime]
    remark: Optional[str]  # On-time / Late


@dataclass(frozen=True)
class MemberAttendanceSummary:
    member_id: str
    sessions_total: int
    sessions_attended: int
    sessions_missed: int
    late_count: int
    attendance_rate: float
    recent: Tuple[MemberAttendanceRecord, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memberId": self.member_id,
            "sessionsTotal": self.sessions_total,
            "sessionsAttended": self.sessions_attended,
            "sessionsMissed": self.sessions_missed,
            "lateCount": self.late_count,
            "attendanceRate": self.attendance_rate,
            "recent": [
                {
                    "date": r.date,
                    "status": r.status,
                    "arrivalTime": r.arrival_time.isoformat() if r.arrival_time else None,
                    "exitTime": r.exit_time.isoformat() if r.exit_time else None,
                    "remark": r.remark,
                }
                for r in self.recent
            ],
        }


class SessionHistory:
    """Prepend-only archive of closed sessions, most recent first."""

    def __init__(self, sessions: Optional[Sequence[HistorySession]] = None):
        self._sessions: List[HistorySession] = list(sessions or [])
        self._lock = threading.Lock()

    @classmethod
    def from_records(cls, records: Sequence[Mapping[str, Any]]) -> "SessionHistory":
        sessions = []
        for record in records:
            try:
                sessions.append(session_from_record(record))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed history record: {e}")
        return cls(sessions)

    def to_records(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [s.to_dict() for s in self._sessions]

    def prepend(self, session: HistorySession):
        with self._lock:
            self._sessions.insert(0, session)

    @property
    def sessions(self) -> Tuple[HistorySession, ...]:
        with self._lock:
            return tuple(self._sessions)

    def latest(self) -> Optional[HistorySession]:
        with self._lock:
            return self._sessions[0] if self._sessions else None

    def find(self, session_id: str) -> Optional[HistorySession]:
        with self._lock:
            for session in self._sessions:
                if session.id == session_id:
                    return session
        return None

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[HistorySession]:
        return iter(self.sessions)

    def member_summary(self, member: Member, recent_limit: int = 5) -> MemberAttendanceSummary:
        """Attendance statistics for one member across sessions held since they registered."""
        relevant = [
            s for s in self.sessions
            if member.created_at is None or s.end_time >= member.created_at
        ]

        records = []
        attended = late = 0
        for session in relevant:
            attendee = session.find_attendee(member.id)
            if attendee:
                attended += 1
                if attendee.status == AttendanceStatus.LATE:
                    late += 1
                records.append(MemberAttendanceRecord(
                    date=session.start_time.date().isoformat(),
                    status="Present",
                    arrival_time=attendee.arrival_time,
                    exit_time=attendee.exit_time,
                    remark=attendee.status.value,
                ))
            else:
                records.append(MemberAttendanceRecord(
                    date=session.start_time.date().isoformat(),
                    status="Absent",
                    arrival_time=None,
                    exit_time=None,
                    remark=None,
                ))

        total = len(relevant)
        rate = round(attended / total * 100, 1) if total else 0.0
        return MemberAttendanceSummary(
            member_id=member.id,
            sessions_total=total,
            sessions_attended=attended,
            sessions_missed=total - attended,
            late_count=late,
            attendance_rate=rate,
            recent=tuple(records[:recent_limit]),
        )
