"""Event Dispatcher: ordered, retried, dead-lettered execution of side-effect handlers.

Invariants:
    - submit() never blocks and never raises into the caller (mutation already committed)
    - One worker task per stream (course_id): a stream's events run in commit order,
      different streams run concurrently
    - Events staged in the outbox are read back per course in outbox id order, whatever
      order their submit() calls arrived in; submit() only wakes the stream
    - An outbox row is acknowledged (dispatched_at) after every routed handler ran;
      rows not acknowledged are redelivered by recover() (at-least-once)
    - Each (event, handler) pair is retried with bounded exponential backoff; after the
      ceiling it is persisted as a DeadLetter, never silently dropped
    - stop() leaves unfinished outbox events pending and dead-letters unfinished
      in-memory events; a submit after stop is treated the same way
    - A dead letter is stamped replayed only after its handler succeeded

Design Decisions:
    - Explicit {EventKind: [handler, ...]} table built once by build_dispatcher
      (no decorator registration, no module-level bus)
    - ±25% jitter on backoff: handlers hitting the same sink do not retry in lockstep
    - Replay re-runs only the handler that failed, not the whole route
    - Events without an outbox row (tests, dead-letter replay) use an in-memory queue
"""

import asyncio
import logging
import random
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select, update

from groupsync.config import Settings
from groupsync.core.domain_types import EventKind
from groupsync.core.events import DomainEvent, event_from_payload
from groupsync.core.repository_protocols import EventHandler, NotificationSink, SessionScope
from groupsync.models.dead_letter import DeadLetter
from groupsync.services.event_handlers import (
    AssessmentScoreChangedHandler,
    CloseEmptyGroupsHandler,
    ForwardToSinkHandler,
)
from groupsync.services.outbox import OutboxStore

logger = logging.getLogger(__name__)


def handler_name(handler: EventHandler) -> str:
    return getattr(handler, "name", None) or getattr(
        handler, "__qualname__", type(handler).__name__,
    )


class DispatcherStoppedError(RuntimeError):
    """The dispatcher shut down before the handler ran to completion."""


@dataclass(frozen=True)
class _Work:
    event: DomainEvent
    only_handler: str | None = None
    dead_letter_id: UUID | None = None


class DeadLetterStore:
    """Persists failed (event, handler) pairs for manual replay."""

    def __init__(self, session_scope: SessionScope):
        self._session_scope = session_scope

    async def save(
        self, event: DomainEvent, handler: str, error: Exception, attempts: int,
    ) -> None:
        async with self._session_scope() as db:
            db.add(DeadLetter(
                event_kind=event.kind.value,
                stream_key=event.stream_key,
                handler=handler,
                payload=event.model_dump(mode="json", exclude={"outbox_id"}),
                error=f"{type(error).__name__}: {error}",
                attempts=attempts,
            ))
            await db.commit()

    async def pending(self, limit: int = 100) -> list[DeadLetter]:
        async with self._session_scope() as db:
            result = await db.execute(
                select(DeadLetter)
                .where(DeadLetter.replayed_at.is_(None))
                .order_by(DeadLetter.created_at.asc())
                .limit(limit),
            )
            return list(result.scalars().all())

    async def mark_replayed(self, ids: list) -> None:
        if not ids:
            return
        async with self._session_scope() as db:
            await db.execute(
                update(DeadLetter)
                .where(DeadLetter.id.in_(ids))
                .values(replayed_at=datetime.now(timezone.utc)),
            )
            await db.commit()


class EventDispatcher:
    """Runs routed handlers for submitted events on per-stream workers."""

    def __init__(
        self,
        routes: dict[EventKind, list[EventHandler]],
        dead_letter_store: DeadLetterStore | None = None,
        outbox: OutboxStore | None = None,
        max_retries: int = 3,
        base_delay_ms: int = 200,
        max_delay_ms: int = 10_000,
        outbox_batch_size: int = 100,
    ):
        self._routes = {kind: list(handlers) for kind, handlers in routes.items()}
        self._store = dead_letter_store
        self._outbox = outbox
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.outbox_batch_size = outbox_batch_size

        self._queues: dict[str, deque[_Work]] = {}
        self._scans: set[str] = set()
        self._current: dict[str, _Work] = {}
        self._unacknowledged: set[int] = set()
        self._replaying: set[UUID] = set()
        self._workers: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._stopped = False
        self._error_counts: dict[str, int] = defaultdict(int)
        self._dead_letters: list[tuple[DomainEvent, str, str]] = []
        self.processed = 0

    # ─── Submission ─────────────────────────────────────────────

    def submit(self, event: DomainEvent) -> None:
        """Hand a committed event over. Returns immediately."""
        if self._stopped:
            self._reject(event)
            return
        self._route(event)

    def _durable(self, event: DomainEvent) -> bool:
        return event.outbox_id is not None and self._outbox is not None

    def _route(self, event: DomainEvent) -> None:
        if self._durable(event):
            self._scans.add(event.stream_key)
            self._ensure_worker(event.stream_key)
        else:
            self._enqueue(_Work(event))

    def _reject(self, event: DomainEvent) -> None:
        extra = {"course_id": event.course_id, "event_kind": event.kind.value}
        if self._durable(event):
            logger.warning(
                f"Dispatcher stopped, {event.kind.value} left in the outbox for recovery",
                extra=extra,
            )
            return
        logger.error(
            f"Dispatcher stopped, {event.kind.value} dead-lettered",
            extra=extra,
        )
        task = asyncio.get_running_loop().create_task(
            self._dead_letter_unrun(_Work(event)),
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _enqueue(self, work: _Work) -> None:
        self._queues.setdefault(work.event.stream_key, deque()).append(work)
        self._ensure_worker(work.event.stream_key)

    def _ensure_worker(self, key: str) -> None:
        self._idle.clear()
        if key not in self._workers:
            self._workers[key] = asyncio.get_running_loop().create_task(
                self._drain(key), name=f"dispatch:{key}",
            )

    async def recover(self) -> int:
        """Wake every stream that has undispatched outbox events (after a restart)."""
        if self._outbox is None:
            return 0
        streams = await self._outbox.pending_streams()
        for key in streams:
            self._scans.add(key)
            self._ensure_worker(key)
        if streams:
            logger.info(f"Recovering outbox events of {len(streams)} course(s)")
        return len(streams)

    # ─── Workers ────────────────────────────────────────────────

    async def _drain(self, key: str) -> None:
        queue = self._queues.setdefault(key, deque())
        try:
            while True:
                if key in self._scans:
                    self._scans.discard(key)
                    await self._drain_outbox(key)
                elif queue:
                    await self._process(key, queue.popleft())
                else:
                    break
        finally:
            self._workers.pop(key, None)
            if not queue:
                self._queues.pop(key, None)
            if not self._workers:
                self._idle.set()

    async def _drain_outbox(self, key: str) -> None:
        try:
            events = await self._outbox.pending(key, self.outbox_batch_size)
        except Exception:
            logger.exception(
                "Outbox read failed, events stay pending until recovery",
                extra={"course_id": key},
            )
            return
        for event in events:
            if event.outbox_id in self._unacknowledged:
                continue
            await self._process(key, _Work(event))
            try:
                await self._outbox.mark_dispatched(event.outbox_id)
            except Exception:
                # handled; redelivered by the next recover()
                self._unacknowledged.add(event.outbox_id)
                logger.exception(
                    f"Outbox row {event.outbox_id} could not be acknowledged",
                    extra={"course_id": key, "sequence": event.sequence},
                )
        if len(events) >= self.outbox_batch_size:
            self._scans.add(key)

    async def _process(self, key: str, work: _Work) -> None:
        self._current[key] = work
        await self._dispatch(work)
        self._current.pop(key, None)

    def _handlers_for(self, work: _Work) -> list[EventHandler]:
        handlers = self._routes.get(work.event.kind, [])
        if work.only_handler is not None:
            handlers = [h for h in handlers if handler_name(h) == work.only_handler]
        return handlers

    async def _dispatch(self, work: _Work) -> None:
        event = work.event
        handlers = self._handlers_for(work)
        if not handlers:
            logger.debug(
                f"No handler for {event.kind.value}",
                extra={"event_kind": event.kind.value},
            )
            return
        for handler in handlers:
            name = handler_name(handler)
            follow_ups, error = await self._run_with_retry(event, handler)
            if error is not None:
                if work.dead_letter_id is None:
                    await self._dead_letter(event, name, error, self.max_retries + 1)
                else:
                    self._replaying.discard(work.dead_letter_id)
                    logger.warning(
                        f"Replay of {name} failed again, dead letter kept",
                        extra={"course_id": event.course_id, "handler": name},
                    )
                continue
            if work.dead_letter_id is not None:
                await self._mark_replayed(work.dead_letter_id)
            for follow_up in follow_ups:
                self._route(follow_up)
        self.processed += 1

    async def _run_with_retry(
        self, event: DomainEvent, handler: EventHandler,
    ) -> tuple[list[DomainEvent], Exception | None]:
        name = handler_name(handler)
        extra = {
            "course_id": event.course_id,
            "event_kind": event.kind.value,
            "handler": name,
            "sequence": event.sequence,
        }
        for attempt in range(self.max_retries + 1):
            try:
                result = await handler(event)
                return list(result or []), None
            except Exception as e:
                if attempt >= self.max_retries:
                    self._error_counts[event.kind.value] += 1
                    logger.exception(
                        f"Handler {name} failed after {attempt + 1} attempt(s)",
                        extra={**extra, "attempt": attempt + 1},
                    )
                    return [], e
                delay = self._backoff(attempt)
                logger.warning(
                    f"Handler {name} failed, retry after {delay}ms: {e}",
                    extra={**extra, "attempt": attempt + 1},
                )
                await asyncio.sleep(delay / 1000)
        return [], None

    def _backoff(self, attempt: int) -> int:
        """Exponential backoff with ±25% jitter."""
        delay = min(self.max_delay_ms, (2 ** attempt) * self.base_delay_ms)
        return int(delay * random.uniform(0.75, 1.25))  # nosec B311

    async def _dead_letter(
        self, event: DomainEvent, handler: str, error: Exception, attempts: int,
    ) -> None:
        self._dead_letters.append((event, handler, str(error)))
        if self._store is None:
            return
        try:
            await self._store.save(event, handler, error, attempts)
        except Exception:
            logger.exception(
                f"Dead letter for {handler} could not be persisted",
                extra={"course_id": event.course_id, "event_kind": event.kind.value},
            )

    async def _dead_letter_unrun(self, work: _Work) -> None:
        error = DispatcherStoppedError("dispatcher stopped before the handler completed")
        for handler in self._handlers_for(work):
            await self._dead_letter(work.event, handler_name(handler), error, 0)

    # ─── Replay ─────────────────────────────────────────────────

    async def replay_dead_letters(self, limit: int = 100) -> int:
        """Re-run unreplayed dead letters on the handler that failed them."""
        if self._store is None:
            return 0
        if self._stopped:
            logger.warning("Dispatcher stopped, dead letters not replayed")
            return 0
        queued = 0
        for row in await self._store.pending(limit):
            if row.id in self._replaying:
                continue
            self._replaying.add(row.id)
            event = event_from_payload(row.event_kind, row.payload)
            self._enqueue(_Work(event, only_handler=row.handler, dead_letter_id=row.id))
            queued += 1
        if queued:
            logger.info(f"Replaying {queued} dead letter(s)")
        return queued

    async def _mark_replayed(self, dead_letter_id: UUID) -> None:
        self._replaying.discard(dead_letter_id)
        try:
            await self._store.mark_replayed([dead_letter_id])
        except Exception:
            logger.exception(f"Dead letter {dead_letter_id} could not be stamped replayed")

    # ─── Lifecycle / observability ──────────────────────────────

    async def wait_idle(self, timeout: float | None = None) -> None:
        """Wait until every stream queue is drained."""
        await asyncio.wait_for(self._idle.wait(), timeout)

    async def stop(self, timeout: float | None = 10.0) -> None:
        """Drain; then cancel and account for whatever did not finish."""
        self._stopped = True
        try:
            await self.wait_idle(timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Dispatcher did not drain in {timeout}s, cancelling workers")
        workers = list(self._workers.values())
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        unfinished = list(self._current.values())
        for queue in self._queues.values():
            unfinished.extend(queue)
        self._current.clear()
        self._queues.clear()
        left_pending = 0
        for work in unfinished:
            if self._durable(work.event):
                left_pending += 1
            elif work.dead_letter_id is not None:
                self._replaying.discard(work.dead_letter_id)
            else:
                await self._dead_letter_unrun(work)
        if left_pending or self._scans:
            logger.warning(
                f"{left_pending} in-flight outbox event(s) and {len(self._scans)} "
                f"unscanned stream(s) left pending for recovery",
            )
        self._scans.clear()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def get_error_counts(self) -> dict[str, int]:
        return dict(self._error_counts)

    @property
    def dead_letters(self) -> list[tuple[DomainEvent, str, str]]:
        """In-process record of (event, handler, error) dead letters."""
        return list(self._dead_letters)


def build_dispatcher(
    settings: Settings, session_scope: SessionScope, sink: NotificationSink,
) -> EventDispatcher:
    """Wire the routing table once, at startup."""
    forward = ForwardToSinkHandler(sink)
    routes: dict[EventKind, list[EventHandler]] = {
        EventKind.USER_LEFT_GROUP: [CloseEmptyGroupsHandler(session_scope, settings), forward],
        EventKind.SCORE_CHANGED: [AssessmentScoreChangedHandler(sink, session_scope)],
        EventKind.USER_JOINED_GROUP: [forward],
        EventKind.REGISTRATIONS_REMOVED: [forward],
        EventKind.GROUP_CLOSED: [forward],
    }
    return EventDispatcher(
        routes,
        dead_letter_store=DeadLetterStore(session_scope),
        outbox=OutboxStore(session_scope),
        max_retries=settings.dispatcher_max_retries,
        base_delay_ms=settings.dispatcher_base_delay_ms,
        max_delay_ms=settings.dispatcher_max_delay_ms,
        outbox_batch_size=settings.dispatcher_outbox_batch_size,
    )
