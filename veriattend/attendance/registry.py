"""
Member registry: enrolment, uniqueness rules and lookups.
"""
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from veriattend.attendance.errors import DuplicateIdentity, InvalidMemberData, PersistenceWriteFailure
from veriattend.attendance.models import Member, MemberRole
from veriattend.attendance.passwords import hash_password, verify_password
from veriattend.attendance.storage import AttendanceRepository
from veriattend.utils.config import config
from veriattend.utils.logger import logger


class MemberRegistry:
    """Sole owner of member records."""

    def __init__(self, repository: Optional[AttendanceRepository] = None,
                 members: Optional[Sequence[Member]] = None,
                 descriptor_length: int = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.repository = repository
        self.descriptor_length = descriptor_length or config.face.descriptor_length
        self.clock = clock
        self._lock = threading.RLock()
        self._version = 0

        if members is not None:
            self._members: List[Member] = list(members)
        elif repository is not None:
            self._members = repository.load_members()
        else:
            self._members = []

        logger.debug(f"Member registry loaded with {len(self._members)} members")

    @property
    def version(self) -> int:
        """Incremented on every change to the member list."""
        return self._version

    @property
    def members(self) -> Tuple[Member, ...]:
        with self._lock:
            return tuple(self._members)

    def __len__(self) -> int:
        return len(self._members)

    def non_admin_members(self) -> List[Member]:
        with self._lock:
            return [m for m in self._members if not m.is_admin]

    def biometric_members(self) -> List[Member]:
        with self._lock:
            return [m for m in self._members if m.has_descriptor]

    def _validate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        name = (data.get("name") or "").strip()
        if not name:
            raise InvalidMemberData("Member name is required.")

        try:
            role = MemberRole(data.get("role", MemberRole.STUDENT))
        except ValueError:
            raise InvalidMemberData(f"Unknown member type: {data.get('role')}")

        matric_number = (data.get("matric_number") or "").strip() or None
        if role != MemberRole.ADMIN and not matric_number:
            raise InvalidMemberData("A matric number is required for students and staff.")

        descriptor = data.get("face_descriptor")
        if role == MemberRole.ADMIN:
            descriptor = None
        elif descriptor is not None:
            descriptor = [float(v) for v in descriptor]
            if len(descriptor) != self.descriptor_length:
                raise InvalidMemberData(
                    f"Face descriptor must have {self.descriptor_length} values, got {len(descriptor)}."
                )

        return {
            "name": name,
            "role": role,
            "matric_number": matric_number,
            "face_descriptor": descriptor or None,
        }

    def _check_uniqueness(self, name: str, role: MemberRole, matric_number: Optional[str]):
        if role == MemberRole.ADMIN:
            lowered = name.lower()
            if any(m.is_admin and m.name.lower() == lowered for m in self._members):
                raise DuplicateIdentity("An admin with this username already exists.")
        else:
            if any(not m.is_admin and m.matric_number == matric_number for m in self._members):
                raise DuplicateIdentity("A member with this matric number already exists.")

    def add_member(self, data: Dict[str, Any]) -> Member:
        """
        Register a new member.

        Args:
            data: name, role, matric_number, password, avatar_ref and
                face_descriptor (ignored for admins)

        Returns:
            The created member

        Raises:
            InvalidMemberData: required fields missing or malformed
            DuplicateIdentity: an admin with the same name or a member with
                the same matric number already exists
        """
        fields = self._validate(data)

        with self._lock:
            self._check_uniqueness(fields["name"], fields["role"], fields["matric_number"])

            password = data.get("password")
            member = Member(
                id=uuid.uuid4().hex,
                name=fields["name"],
                role=fields["role"],
                matric_number=fields["matric_number"],
                password_hash=hash_password(password) if password else None,
                avatar_ref=data.get("avatar_ref"),
                face_descriptor=fields["face_descriptor"],
                created_at=self.clock(),
            )
            self._members.append(member)
            self._version += 1
            self._persist()

        logger.log_attendance_event(member.id, "MEMBER_REGISTERED", {
            "name": member.name,
            "role": member.role.value,
            "has_descriptor": member.has_descriptor
        })
        return member

    def _persist(self):
        if self.repository is None:
            return
        try:
            self.repository.save_members(self._members)
        except PersistenceWriteFailure as e:
            logger.error(f"Member registry not persisted: {e.message}")

    def find_by_id(self, member_id: str) -> Optional[Member]:
        with self._lock:
            for member in self._members:
                if member.id == member_id:
                    return member
        return None

    def find_by_credentials(self, identifier: str, role) -> Optional[Member]:
        """Admins are identified by case-insensitive name, everyone else by matric number."""
        try:
            role = MemberRole(role)
        except ValueError:
            return None

        identifier = (identifier or "").strip()
        with self._lock:
            for member in self._members:
                if member.role != role:
                    continue
                if role == MemberRole.ADMIN:
                    if member.name.lower() == identifier.lower():
                        return member
                elif member.matric_number == identifier:
                    return member
        return None

    def authenticate(self, identifier: str, password: str, role) -> Optional[Member]:
        member = self.find_by_credentials(identifier, role)
        if member and verify_password(password or "", member.password_hash):
            return member
        return None
