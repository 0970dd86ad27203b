"""Boundary Protocols: contracts between core and shell.

Invariants:
    - Core NEVER imports from shell; dependency arrows point inward only
    - Outbound delivery and session acquisition accessed through Protocol types
    - Implementations provided by shell via dependency injection

Design Decisions:
    - Protocol over ABC: structural subtyping, test fakes need no base class
    - EventPublisher is a plain callable: services only ever hand events over,
      they never await handler completion
"""

from collections.abc import Callable, Sequence
from contextlib import AbstractAsyncContextManager
from typing import Awaitable, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from groupsync.core.events import DomainEvent, NotificationMessage


class NotificationSink(Protocol):
    """Delivery of outbound notifications (webhooks, mail). At-least-once."""
    async def publish(self, message: NotificationMessage) -> None: ...


# Opens a fresh session for work that outlives the request (dispatcher handlers).
SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

# Hands a committed event to the dispatcher. Never blocks.
EventPublisher = Callable[[DomainEvent], None]

# Handler contract: may return follow-up events for the same stream.
EventHandler = Callable[[DomainEvent], Awaitable[Sequence[DomainEvent] | None]]
