"""Event Handlers: side effects run by the dispatcher after a mutation committed.

Invariants:
    - Handlers are idempotent: at-least-once delivery may run one twice
    - A handler that mutates opens its own session (SessionScope) and transaction
    - Follow-up events are returned, never published directly, so they stay on
      the originating stream

Design Decisions:
    - Callable objects with a stable `name`: dead letters reference the handler by it
    - Auto-close reuses MembershipService.close_if_empty: one definition of "empty"
"""

import logging
from collections.abc import Sequence

from sqlalchemy import select

from groupsync.config import Settings
from groupsync.core.events import DomainEvent, ScoreChanged, UserLeftGroup
from groupsync.core.repository_protocols import NotificationSink, SessionScope
from groupsync.models.membership import Membership
from groupsync.services.membership import MembershipService

logger = logging.getLogger(__name__)


class ForwardToSinkHandler:
    """Publish the event's notification projection unchanged."""
    name = "forward_to_sink"

    def __init__(self, sink: NotificationSink):
        self._sink = sink

    async def __call__(self, event: DomainEvent) -> None:
        await self._sink.publish(event.to_notification())


class CloseEmptyGroupsHandler:
    """Close the group a participant just left if nobody is left in it."""
    name = "close_empty_groups"

    def __init__(self, session_scope: SessionScope, settings: Settings | None = None):
        self._session_scope = session_scope
        self._settings = settings

    async def __call__(self, event: UserLeftGroup) -> Sequence[DomainEvent]:
        collected: list[DomainEvent] = []
        async with self._session_scope() as db:
            service = MembershipService(db, publish=collected.append, settings=self._settings)
            closed = await service.close_if_empty(event.group_id)
        if closed:
            logger.info(
                "Empty group closed",
                extra={"course_id": event.course_id, "group_id": event.group_id},
            )
        return collected


class AssessmentScoreChangedHandler:
    """Notify about a changed score, addressed to the group's members for group assessments."""
    name = "assessment_score_changed"

    def __init__(self, sink: NotificationSink, session_scope: SessionScope | None = None):
        self._sink = sink
        self._session_scope = session_scope

    async def __call__(self, event: ScoreChanged) -> None:
        message = event.to_notification()
        if event.group_id is not None and self._session_scope is not None:
            async with self._session_scope() as db:
                members = (await db.execute(
                    select(Membership.participant_id)
                    .where(Membership.group_id == event.group_id)
                    .order_by(Membership.joined_at.asc()),
                )).scalars().all()
            message = message.model_copy(update={"participant_ids": list(members)})
        await self._sink.publish(message)
