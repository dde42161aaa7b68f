"""
Error taxonomy for the attendance core.

Core components raise these; the coordinator turns them into
``OperationResult`` values so that callers always get a structured outcome.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional


class AttendanceError(Exception):
    """Base class for every recoverable attendance error."""

    code = "ATTENDANCE_ERROR"
    default_message = "Attendance operation failed."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class DuplicateIdentity(AttendanceError):
    code = "DUPLICATE_IDENTITY"
    default_message = "A member with this identity already exists."


class InvalidMemberData(AttendanceError):
    code = "INVALID_MEMBER_DATA"
    default_message = "Member data is incomplete or invalid."


class SessionAlreadyActive(AttendanceError):
    code = "SESSION_ALREADY_ACTIVE"
    default_message = "An attendance session is already active."


class NoActiveSession(AttendanceError):
    code = "NO_ACTIVE_SESSION"
    default_message = "There is no active attendance session."


class NoCameraAccess(AttendanceError):
    code = "NO_CAMERA_ACCESS"
    default_message = "Camera access is required to start a session."


class ModelsNotLoaded(AttendanceError):
    code = "MODELS_NOT_LOADED"
    default_message = "Face recognition models are not loaded yet."


class NoMembersRegistered(AttendanceError):
    code = "NO_MEMBERS_REGISTERED"
    default_message = "No members are registered. Register members before starting a session."


class NoBiometricMembers(AttendanceError):
    code = "NO_BIOMETRIC_MEMBERS"
    default_message = "No registered member has facial data for recognition."


class MatcherUnavailable(AttendanceError):
    code = "MATCHER_UNAVAILABLE"
    default_message = "No face descriptors are available for matching."


class PersistenceWriteFailure(AttendanceError):
    code = "PERSISTENCE_WRITE_FAILURE"
    default_message = "Failed to save data to storage."


class AnalysisFailed(AttendanceError):
    code = "ANALYSIS_FAILED"
    default_message = "Could not perform analysis. Please try again."


@dataclass
class OperationResult:
    """Structured outcome returned by every coordinator operation."""
    success: bool
    message: str
    error: Optional[str] = None
    data: Any = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> "OperationResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failure(cls, exc: AttendanceError) -> "OperationResult":
        return cls(success=False, message=exc.message, error=exc.code)

    def to_dict(self) -> Dict[str, Any]:
        result = {"success": self.success, "message": self.message}
        if self.error:
            result["error"] = self.error
        if self.data is not None:
            result["data"] = self.data
        return result
