"""Domain Types: rich types that replace bare primitives across the codebase.

Invariants:
    - GroupId, ParticipantId, RegistrationId wrap UUIDs (rows owned by this service)
    - CourseId, UserId, AssignmentId, AssessmentId wrap str (owned by the wider backend)
    - All valid states encoded as Enums, no raw string matching

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: serialize to JSON (change feed, notifications) without custom encoders
"""

from enum import Enum
from typing import NewType
from uuid import UUID


# ─── Identity Types ──────────────────────────────────────────────

GroupId = NewType("GroupId", UUID)
ParticipantId = NewType("ParticipantId", UUID)
RegistrationId = NewType("RegistrationId", UUID)

CourseId = NewType("CourseId", str)
UserId = NewType("UserId", str)
AssignmentId = NewType("AssignmentId", str)
AssessmentId = NewType("AssessmentId", str)


# ─── Enums ───────────────────────────────────────────────────────

class CourseRole(str, Enum):
    """Role of a participant within one course."""
    STUDENT = "student"
    TUTOR = "tutor"
    LECTURER = "lecturer"


class ChangeType(str, Enum):
    """Kind of mutation recorded in the change feed."""
    INSERT = "insert"
    UPDATE = "update"
    REMOVE = "remove"


class AffectedObject(str, Enum):
    """Tracked entity types. Every mutation of these produces one ChangeRecord."""
    GROUP = "group"
    MEMBERSHIP = "membership"
    ASSIGNMENT_REGISTRATION = "assignment_registration"
    REGISTRATION_MEMBER = "registration_member"


class EventKind(str, Enum):
    """Domain events routed by the dispatcher."""
    USER_JOINED_GROUP = "user_joined_group"
    USER_LEFT_GROUP = "user_left_group"
    GROUP_CLOSED = "group_closed"
    SCORE_CHANGED = "score_changed"
    REGISTRATIONS_REMOVED = "registrations_removed"


class NotificationEvent(str, Enum):
    """Event names as seen by external notification subscribers."""
    USER_JOINED_GROUP = "USER_JOINED_GROUP"
    USER_LEFT_GROUP = "USER_LEFT_GROUP"
    GROUP_CLOSED = "GROUP_CLOSED"
    ASSESSMENT_SCORE_CHANGED = "ASSESSMENT_SCORE_CHANGED"
    REGISTRATIONS_REMOVED = "REGISTRATIONS_REMOVED"
