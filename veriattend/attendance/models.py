"""
Data model for members, live sessions, attendees and archived sessions.

JSON field names follow the stored format (``matricNumber``, ``memberType``,
``faceDescriptor``, ...) so existing data files keep loading.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from veriattend.attendance.passwords import hash_password


class MemberRole(str, Enum):
    STUDENT = "student"
    STAFF = "staff"
    ADMIN = "admin"


class SessionState(str, Enum):
    INACTIVE = "inactive"
    ENTRY_ACTIVE = "entry_active"
    EXIT_ACTIVE = "exit_active"
    CLOSED = "closed"


class ScanMode(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


class AttendanceStatus(str, Enum):
    ON_TIME = "On-time"
    LATE = "Late"


_CLOCK_FORMATS = ("%I:%M %p", "%I:%M:%S %p", "%H:%M", "%H:%M:%S")


def parse_stored_time(value: Any, day: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse a stored timestamp.

    Accepts ISO strings, epoch milliseconds, and clock-only strings such as
    ``"09:03 AM"``, which are placed on the date of ``day``.

    Raises:
        ValueError: the value matches none of the accepted forms
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000)
    if not isinstance(value, str):
        raise TypeError(f"Unsupported timestamp: {value!r}")

    text = value.replace("\u202f", " ").replace("\xa0", " ").strip()
    if text.isdigit():
        return datetime.fromtimestamp(int(text) / 1000)
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        if day is None:
            raise

    for fmt in _CLOCK_FORMATS:
        try:
            clock = datetime.strptime(text, fmt).time()
        except ValueError:
            continue
        return datetime.combine(day.date(), clock)
    raise ValueError(f"Unrecognised time: {value!r}")


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Member:
    """A registered person, optionally carrying a face descriptor."""
    id: str
    name: str
    role: MemberRole
    matric_number: Optional[str] = None
    password_hash: Optional[str] = None
    avatar_ref: Optional[str] = None
    face_descriptor: Optional[List[float]] = None
    created_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == MemberRole.ADMIN

    @property
    def has_descriptor(self) -> bool:
        return not self.is_admin and bool(self.face_descriptor)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "matricNumber": self.matric_number,
            "memberType": self.role.value,
            "passwordHash": self.password_hash,
            "avatar": self.avatar_ref,
            "faceDescriptor": self.face_descriptor,
            "createdAt": _format_time(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Member":
        descriptor = data.get("faceDescriptor")
        password_hash = data.get("passwordHash")
        if password_hash is None and data.get("password"):
            # Older records stored the password in plain text
            password_hash = hash_password(data["password"])
        return cls(
            id=str(data["id"]),
            name=data["name"],
            role=MemberRole(data.get("memberType", MemberRole.STUDENT.value)),
            matric_number=data.get("matricNumber"),
            password_hash=password_hash,
            avatar_ref=data.get("avatar"),
            face_descriptor=[float(v) for v in descriptor] if descriptor else None,
            created_at=parse_stored_time(data.get("createdAt")),
        )


@dataclass
class Attendee:
    """A member's arrival (and optional exit) within one live session."""
    member_id: str
    name: str
    role: MemberRole
    arrival_time: datetime
    status: AttendanceStatus
    matric_number: Optional[str] = None
    exit_time: Optional[datetime] = None
    avatar_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memberId": self.member_id,
            "name": self.name,
            "matricNumber": self.matric_number,
            "memberType": self.role.value,
            "arrivalTime": _format_time(self.arrival_time),
            "status": self.status.value,
            "exitTime": _format_time(self.exit_time),
            "avatar": self.avatar_ref,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], day: Optional[datetime] = None) -> "Attendee":
        return cls(
            member_id=str(data.get("memberId", data.get("id"))),
            name=data["name"],
            matric_number=data.get("matricNumber"),
            role=MemberRole(data["memberType"]),
            arrival_time=parse_stored_time(data["arrivalTime"] if "arrivalTime" in data else data["time"], day),
            status=AttendanceStatus(data["status"]),
            exit_time=parse_stored_time(data.get("exitTime"), day),
            avatar_ref=data.get("avatar"),
        )


@dataclass
class Session:
    """One live attendance event. Attendees are kept most-recent-first."""
    id: str
    start_time: datetime
    state: SessionState = SessionState.ENTRY_ACTIVE
    attendees: List[Attendee] = field(default_factory=list)

    @property
    def mode(self) -> Optional[ScanMode]:
        if self.state == SessionState.ENTRY_ACTIVE:
            return ScanMode.ENTRY
        if self.state == SessionState.EXIT_ACTIVE:
            return ScanMode.EXIT
        return None

    @property
    def is_active(self) -> bool:
        return self.state in (SessionState.ENTRY_ACTIVE, SessionState.EXIT_ACTIVE)

    def find_attendee(self, member_id: str) -> Optional[Attendee]:
        for attendee in self.attendees:
            if attendee.member_id == member_id:
                return attendee
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "mode": self.mode.value if self.mode else None,
            "startTime": _format_time(self.start_time),
            "attendees": [a.to_dict() for a in self.attendees],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        start_time = parse_stored_time(data["startTime"])
        if "state" in data:
            state = SessionState(data["state"])
        elif data.get("isActive", True):
            # Older records carry only ``isActive`` and ``mode``
            state = SessionState.EXIT_ACTIVE if data.get("mode") == ScanMode.EXIT.value else SessionState.ENTRY_ACTIVE
        else:
            state = SessionState.CLOSED
        return cls(
            id=str(data["id"]),
            start_time=start_time,
            state=state,
            attendees=[Attendee.from_dict(a, day=start_time) for a in data.get("attendees", [])],
        )


@dataclass(frozen=True)
class HistoryAttendee:
    """History-safe projection of an attendee. No image or biometric data."""
    member_id: str
    name: str
    matric_number: Optional[str]
    role: MemberRole
    arrival_time: datetime
    status: AttendanceStatus
    exit_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memberId": self.member_id,
            "name": self.name,
            "matricNumber": self.matric_number,
            "memberType": self.role.value,
            "arrivalTime": _format_time(self.arrival_time),
            "status": self.status.value,
            "exitTime": _format_time(self.exit_time),
        }


@dataclass(frozen=True)
class HistorySession:
    """An archived, immutable closed session."""
    id: str
    start_time: datetime
    end_time: datetime
    attendees: Tuple[HistoryAttendee, ...] = ()

    @property
    def state(self) -> SessionState:
        return SessionState.CLOSED

    def find_attendee(self, member_id: str) -> Optional[HistoryAttendee]:
        for attendee in self.attendees:
            if attendee.member_id == member_id:
                return attendee
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "startTime": _format_time(self.start_time),
            "endTime": _format_time(self.end_time),
            "attendees": [a.to_dict() for a in self.attendees],
        }
