"""Domain Events: typed, in-memory events derived from committed mutations.

Invariants:
    - One frozen model per EventKind; the kind is a ClassVar, never a payload field
    - Every event carries course_id, which is also its ordering stream key
    - Events are created only after the transaction that justifies them has committed
    - EVENT_TYPES maps every EventKind to its model (dead-letter replay rebuilds from it)
    - sequence is the ChangeRecord sequence of the mutation that produced the event;
      outbox_id is the durable outbox row, set once the event was staged

Design Decisions:
    - pydantic models over dataclasses: model_dump(mode="json") gives the dead-letter
      payload and model_validate rebuilds it, UUIDs included
    - NotificationMessage lives here: it is the only shape that leaves the process,
      and every event knows how to project itself onto it
"""

from typing import Any, ClassVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from groupsync.core.domain_types import EventKind, NotificationEvent


class NotificationMessage(BaseModel):
    """Outbound message for the notification sink."""
    model_config = ConfigDict(frozen=True)

    event: NotificationEvent
    course_id: str
    assignment_id: str | None = None
    group_id: UUID | None = None
    participant_ids: list[UUID] | None = None
    payload: dict[str, Any] | None = None


class DomainEvent(BaseModel):
    """Base for all dispatcher events."""
    model_config = ConfigDict(frozen=True)

    kind: ClassVar[EventKind]
    course_id: str
    sequence: int | None = None
    outbox_id: int | None = None

    @property
    def stream_key(self) -> str:
        return self.course_id

    def to_notification(self) -> NotificationMessage:
        raise NotImplementedError


class UserJoinedGroup(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.USER_JOINED_GROUP
    group_id: UUID
    participant_id: UUID
    user_id: str | None = None

    def to_notification(self) -> NotificationMessage:
        return NotificationMessage(
            event=NotificationEvent.USER_JOINED_GROUP,
            course_id=self.course_id, group_id=self.group_id,
            participant_ids=[self.participant_id],
        )


class UserLeftGroup(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.USER_LEFT_GROUP
    group_id: UUID
    participant_id: UUID
    user_id: str | None = None

    def to_notification(self) -> NotificationMessage:
        return NotificationMessage(
            event=NotificationEvent.USER_LEFT_GROUP,
            course_id=self.course_id, group_id=self.group_id,
            participant_ids=[self.participant_id],
        )


class GroupClosed(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.GROUP_CLOSED
    group_id: UUID

    def to_notification(self) -> NotificationMessage:
        return NotificationMessage(
            event=NotificationEvent.GROUP_CLOSED,
            course_id=self.course_id, group_id=self.group_id,
        )


class ScoreChanged(DomainEvent):
    """Assessment score changed. Raised by the assessment workflow, not by a ChangeRecord."""
    kind: ClassVar[EventKind] = EventKind.SCORE_CHANGED
    assessment_id: str
    assignment_id: str
    delta: float
    group_id: UUID | None = None
    user_id: str | None = None

    def to_notification(self) -> NotificationMessage:
        return NotificationMessage(
            event=NotificationEvent.ASSESSMENT_SCORE_CHANGED,
            course_id=self.course_id,
            assignment_id=self.assignment_id,
            group_id=self.group_id,
            payload={
                "assessmentId": self.assessment_id,
                "delta": self.delta,
                "userId": self.user_id,
            },
        )


class RegistrationsRemoved(DomainEvent):
    """Batched: one event per removal call, listing every affected participant."""
    kind: ClassVar[EventKind] = EventKind.REGISTRATIONS_REMOVED
    assignment_id: str
    group_id: UUID | None = None
    participant_ids: list[UUID] = Field(default_factory=list)

    def to_notification(self) -> NotificationMessage:
        return NotificationMessage(
            event=NotificationEvent.REGISTRATIONS_REMOVED,
            course_id=self.course_id,
            assignment_id=self.assignment_id,
            group_id=self.group_id,
            participant_ids=list(self.participant_ids),
        )


EVENT_TYPES: dict[EventKind, type[DomainEvent]] = {
    EventKind.USER_JOINED_GROUP: UserJoinedGroup,
    EventKind.USER_LEFT_GROUP: UserLeftGroup,
    EventKind.GROUP_CLOSED: GroupClosed,
    EventKind.SCORE_CHANGED: ScoreChanged,
    EventKind.REGISTRATIONS_REMOVED: RegistrationsRemoved,
}


def event_from_payload(kind: EventKind | str, payload: dict[str, Any]) -> DomainEvent:
    """Rebuild an event from its dead-letter payload."""
    return EVENT_TYPES[EventKind(kind)].model_validate(payload)
