"""Outbox Store: dispatcher-side access to committed, not yet dispatched events.

Invariants:
    - pending() returns a course's undispatched events in id (= commit) order
    - mark_dispatched() is the only write; rows are never deleted here
    - Rebuilt events carry their outbox_id, so the dispatcher can acknowledge them

Design Decisions:
    - Each call opens its own short session (SessionScope): dispatcher workers
      outlive requests and must not hold a connection while handlers run
"""

from datetime import datetime, timezone

from sqlalchemy import select, update

from groupsync.core.events import DomainEvent, event_from_payload
from groupsync.core.repository_protocols import SessionScope
from groupsync.models.outbox_event import OutboxEvent


class OutboxStore:
    """Reads and acknowledges outbox rows."""

    def __init__(self, session_scope: SessionScope):
        self._session_scope = session_scope

    async def pending(self, course_id: str, limit: int = 100) -> list[DomainEvent]:
        async with self._session_scope() as db:
            rows = (await db.execute(
                select(OutboxEvent)
                .where(
                    OutboxEvent.course_id == course_id,
                    OutboxEvent.dispatched_at.is_(None),
                )
                .order_by(OutboxEvent.id.asc())
                .limit(limit),
            )).scalars().all()
        return [
            event_from_payload(row.event_kind, row.payload).model_copy(
                update={"outbox_id": row.id},
            )
            for row in rows
        ]

    async def pending_streams(self) -> list[str]:
        """Courses with at least one undispatched event."""
        async with self._session_scope() as db:
            result = await db.execute(
                select(OutboxEvent.course_id)
                .where(OutboxEvent.dispatched_at.is_(None))
                .distinct(),
            )
            return sorted(result.scalars().all())

    async def mark_dispatched(self, outbox_id: int) -> None:
        async with self._session_scope() as db:
            await db.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id == outbox_id)
                .values(dispatched_at=datetime.now(timezone.utc)),
            )
            await db.commit()
