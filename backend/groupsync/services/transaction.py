"""Transaction Scripts: one method per invariant-preserving operation.

Invariants:
    - A decorated method either commits its own work or leaves nothing behind:
      any exception rolls the session back before propagating
    - Events are staged in the outbox before commit (stage) and handed to the
      publisher only after commit (emit_after_commit)
    - A committed event is never lost: if the publisher never sees it, the
      dispatcher recovers it from the outbox

Design Decisions:
    - Decorator over a try/except in every method: the rollback rule is stated once
    - Services receive the publisher as a plain callable, so the request never waits
      for handlers
    - stage() runs after the ChangeRecord append, while the course sequence row is
      locked, so outbox ids follow commit order within a course
"""

import functools

from sqlalchemy.ext.asyncio import AsyncSession

from groupsync.core.events import DomainEvent
from groupsync.core.repository_protocols import EventPublisher
from groupsync.models.outbox_event import OutboxEvent


def transaction_script(fn):
    """Roll back self.db when the wrapped operation raises."""

    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except Exception:
            await self.db.rollback()
            raise

    return wrapper


class TransactionalService:
    """Base for services that mutate through one session and emit events after commit."""

    def __init__(self, db: AsyncSession, publish: EventPublisher | None = None):
        self.db = db
        self._publish = publish

    async def stage(self, event: DomainEvent) -> DomainEvent:
        """Write the event to the outbox in the open transaction. Returns it with outbox_id."""
        row = OutboxEvent(
            course_id=event.stream_key,
            event_kind=event.kind.value,
            sequence=event.sequence,
            payload=event.model_dump(mode="json", exclude={"outbox_id"}),
        )
        self.db.add(row)
        await self.db.flush()
        return event.model_copy(update={"outbox_id": row.id})

    def emit_after_commit(self, *events: DomainEvent | None) -> None:
        if self._publish is None:
            return
        for event in events:
            if event is not None:
                self._publish(event)


class EventIntakeService(TransactionalService):
    """Accepts events raised outside this service (assessment workflow) durably."""

    @transaction_script
    async def accept(self, event: DomainEvent) -> DomainEvent:
        staged = await self.stage(event)
        await self.db.commit()
        self.emit_after_commit(staged)
        return staged
