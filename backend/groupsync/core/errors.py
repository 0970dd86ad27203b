"""Error Hierarchy: typed, categorized exceptions for every pipeline failure mode.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Domain errors (400-level) are expected outcomes; infrastructure errors (500-level) are critical
    - to_response() produces the REST envelope
    - No internal details leaked in user-facing messages

Design Decisions:
    - Single hierarchy with GroupSyncError base: FastAPI global handler catches all (ADR: uniform error shape)
    - Intermediate classes per taxonomy kind (NotFound, Conflict, InvalidState, NoAvailableGroup,
      Internal) so callers can catch a whole kind without knowing every leaf
    - ErrorContext as dataclass: rich observability without coupling to logging framework
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    RESOURCE_NOT_FOUND = "resource_not_found"
    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"
    NO_AVAILABLE_GROUP = "no_available_group"
    DATABASE = "database"
    EXTERNAL_API = "external_api"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    course_id: str | None = None
    group_id: str | None = None
    assignment_id: str | None = None
    participant_id: str | None = None
    debug_info: dict[str, Any] | None = None


class GroupSyncError(Exception):
    """Base exception for all groupsync errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "course_id": self.context.course_id,
                    "group_id": self.context.group_id,
                    "assignment_id": self.context.assignment_id,
                    "participant_id": self.context.participant_id,
                },
            }
        }


# ─── Not Found ──────────────────────────────────────────────────

class ResourceNotFoundError(GroupSyncError):
    """Requested resource does not exist."""
    def __init__(
        self, resource_type: str, resource_id: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, context, 404,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


# ─── Conflict (uniqueness) ──────────────────────────────────────

class ConflictError(GroupSyncError):
    """A unique constraint rejected the write."""
    def __init__(self, message: str, code: str, context: ErrorContext | None = None):
        super().__init__(
            message, code, ErrorCategory.CONFLICT,
            ErrorSeverity.WARNING, context, 409,
        )


class AlreadyMemberError(ConflictError):
    """Duplicate (group, participant) membership."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "This participant is already a member of this group.",
            "ALREADY_MEMBER", context,
        )


class AlreadyParticipantError(ConflictError):
    """Duplicate (course, user) participant."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "This user is already signed up to the course.",
            "ALREADY_PARTICIPANT", context,
        )


class GroupNameTakenError(ConflictError):
    """Another group of the course already uses this name."""
    def __init__(self, name: str, context: ErrorContext | None = None):
        super().__init__(
            f"A group named '{name}' already exists in this course.",
            "GROUP_NAME_TAKEN", context,
        )
        self.name = name


class RegistrationConflictError(ConflictError):
    """Registration could not be written after retrying a lost race."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "The group registration was modified concurrently. Retry the request.",
            "REGISTRATION_CONFLICT", context,
        )


# ─── Invalid State ──────────────────────────────────────────────

class InvalidStateError(GroupSyncError):
    """Operation not allowed in the entity's current state."""
    def __init__(
        self, message: str, code: str,
        context: ErrorContext | None = None, http_status: int = 409,
    ):
        super().__init__(
            message, code, ErrorCategory.INVALID_STATE,
            ErrorSeverity.WARNING, context, http_status,
        )


class GroupClosedError(InvalidStateError):
    """Join attempted on a closed group."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "This group is closed and does not accept new members.",
            "GROUP_CLOSED", context,
        )


class GroupFullError(InvalidStateError):
    """Group reached its capacity between selection and join."""
    def __init__(self, max_size: int, context: ErrorContext | None = None):
        super().__init__(
            f"This group is full (maximum {max_size} members).",
            "GROUP_FULL", context,
        )
        self.max_size = max_size


class InvalidGroupPasswordError(InvalidStateError):
    """Join attempted with a missing or wrong group password."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "The group password is incorrect.",
            "INVALID_GROUP_PASSWORD", context, 403,
        )


class NameSpaceExhaustedError(InvalidStateError):
    """Every schema + N name in [1, bound] is taken."""
    def __init__(self, schema: str, bound: int, context: ErrorContext | None = None):
        super().__init__(
            f"No available group name for schema '{schema}' "
            f"(all of {schema}1..{schema}{bound} are taken, limit {bound}).",
            "NAME_SPACE_EXHAUSTED", context,
        )
        self.schema = schema
        self.bound = bound


# ─── No Available Group ─────────────────────────────────────────

class NoAvailableGroupError(GroupSyncError):
    """No open group below capacity could take the participant."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "No open group with free capacity is available.",
            "NO_AVAILABLE_GROUP", ErrorCategory.NO_AVAILABLE_GROUP,
            ErrorSeverity.WARNING, context, 409,
        )


# ─── Infrastructure Errors (500-level) ──────────────────────────

class DatabaseError(GroupSyncError):
    """Database operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation


class NotificationDeliveryError(GroupSyncError):
    """Notification sink could not deliver a message."""
    def __init__(self, message: str, target: str, context: ErrorContext | None = None):
        super().__init__(
            f"Notification delivery to {target} failed: {message}",
            "NOTIFICATION_DELIVERY_ERROR", ErrorCategory.EXTERNAL_API,
            ErrorSeverity.ERROR, context, 503,
        )
        self.target = target
