"""Event Dispatcher: ordering, isolation, retries, dead letters and the built-in handlers.

Invariants:
    - Events of one stream are handled in submission order; other streams do not wait
    - A failing handler is retried, then dead-lettered; the mutation stays committed
    - Dead letters replay only the failed handler and are stamped only once it succeeded
    - Outbox events run in commit order and survive a stop or a lost submit
    - Nothing submitted is lost on stop: unfinished events stay in the outbox or are dead-lettered
    - Auto-close closes a group emptied by a leave, but not one a later join refilled
    - Score changes reach the sink addressed to the group's members
"""

import asyncio
from uuid import uuid4

from sqlalchemy import select

from groupsync.core.domain_types import EventKind, NotificationEvent
from groupsync.core.events import ScoreChanged, UserJoinedGroup, UserLeftGroup
from groupsync.models.dead_letter import DeadLetter
from groupsync.models.group import Group
from groupsync.services.dispatcher import DeadLetterStore, EventDispatcher, build_dispatcher
from groupsync.services.membership import MembershipService

COURSE = "course-2026"


def _joined(course_id=COURSE):
    return UserJoinedGroup(course_id=course_id, group_id=uuid4(), participant_id=uuid4())


async def test_stream_events_handled_in_submission_order():
    handled = []

    async def slow_then_fast(event):
        # earlier events sleep longer: order must still hold
        await asyncio.sleep(0.01 * (5 - len(handled)))
        handled.append(event.participant_id)

    dispatcher = EventDispatcher({EventKind.USER_JOINED_GROUP: [slow_then_fast]})
    events = [_joined() for _ in range(5)]
    for event in events:
        dispatcher.submit(event)
    await dispatcher.wait_idle(timeout=5)

    assert handled == [e.participant_id for e in events]


async def test_other_streams_are_not_blocked():
    release = asyncio.Event()
    handled = []

    async def handler(event):
        if event.course_id == "blocked":
            await release.wait()
        handled.append(event.course_id)

    dispatcher = EventDispatcher({EventKind.USER_JOINED_GROUP: [handler]})
    dispatcher.submit(_joined("blocked"))
    dispatcher.submit(_joined("free"))
    await asyncio.sleep(0.05)

    assert handled == ["free"]
    release.set()
    await dispatcher.wait_idle(timeout=5)
    assert handled == ["free", "blocked"]


async def test_submit_returns_before_handlers_run():
    handled = []

    async def handler(event):
        handled.append(event)

    dispatcher = EventDispatcher({EventKind.USER_JOINED_GROUP: [handler]})
    dispatcher.submit(_joined())
    assert handled == []
    await dispatcher.wait_idle(timeout=5)
    assert len(handled) == 1


async def test_transient_failure_is_retried(dispatcher, sink):
    sink.fail_times = 1

    dispatcher.submit(_joined())
    await dispatcher.wait_idle(timeout=5)

    assert sink.attempts == 2
    assert sink.events() == [NotificationEvent.USER_JOINED_GROUP.value]
    assert dispatcher.dead_letters == []


async def test_exhausted_retries_are_dead_lettered_and_replayable(
    dispatcher, sink, test_session_factory,
):
    sink.fail_times = 100
    event = _joined()

    dispatcher.submit(event)
    await dispatcher.wait_idle(timeout=5)

    assert sink.attempts == 3  # first try + 2 retries
    assert dispatcher.get_error_counts() == {"user_joined_group": 1}
    async with test_session_factory() as db:
        rows = (await db.execute(select(DeadLetter))).scalars().all()
    assert len(rows) == 1
    assert rows[0].handler == "forward_to_sink"
    assert rows[0].attempts == 3
    assert rows[0].stream_key == COURSE
    assert "NotificationDeliveryError" in rows[0].error

    sink.fail_times = 0
    assert await dispatcher.replay_dead_letters() == 1
    await dispatcher.wait_idle(timeout=5)

    assert sink.messages[-1].participant_ids == [event.participant_id]
    assert await dispatcher.replay_dead_letters() == 0


async def test_handler_failure_does_not_undo_mutation(
    dispatcher, sink, students, settings, test_db, test_session_factory,
):
    sink.fail_times = 100
    service = MembershipService(test_db, publish=dispatcher.submit, settings=settings)
    group_id = (await service.create_group(COURSE)).id

    await service.join(group_id, students[0])
    await dispatcher.wait_idle(timeout=5)

    async with test_session_factory() as db:
        members = await MembershipService(db, settings=settings).get_members(group_id)
    assert [m.id for m in members] == [students[0]]
    assert len(dispatcher.dead_letters) == 1


async def test_leave_closes_empty_group(
    dispatcher, sink, students, settings, test_db, test_session_factory,
):
    service = MembershipService(test_db, publish=dispatcher.submit, settings=settings)
    group_id = (await service.create_group(COURSE)).id
    await service.join(group_id, students[0])

    await service.leave(group_id, students[0])
    await dispatcher.wait_idle(timeout=5)

    async with test_session_factory() as db:
        assert (await db.get(Group, group_id)).is_closed
    assert sink.events() == [
        NotificationEvent.USER_JOINED_GROUP.value,
        NotificationEvent.USER_LEFT_GROUP.value,
        NotificationEvent.GROUP_CLOSED.value,
    ]


async def test_join_before_auto_close_keeps_group_open(
    dispatcher, sink, students, settings, test_db, test_session_factory,
):
    service = MembershipService(test_db, settings=settings)
    group_id = (await service.create_group(COURSE)).id
    await service.join(group_id, students[0])
    await service.leave(group_id, students[0])
    # a second participant joins before the leave event is handled
    await service.join(group_id, students[1])

    dispatcher.submit(UserLeftGroup(
        course_id=COURSE, group_id=group_id, participant_id=students[0],
    ))
    await dispatcher.wait_idle(timeout=5)

    async with test_session_factory() as db:
        assert not (await db.get(Group, group_id)).is_closed
    assert sink.events() == [NotificationEvent.USER_LEFT_GROUP.value]


async def test_auto_close_is_idempotent_under_redelivery(
    dispatcher, sink, students, settings, test_db,
):
    service = MembershipService(test_db, settings=settings)
    group_id = (await service.create_group(COURSE)).id
    left = UserLeftGroup(course_id=COURSE, group_id=group_id, participant_id=students[0])

    dispatcher.submit(left)
    dispatcher.submit(left)
    await dispatcher.wait_idle(timeout=5)

    assert sink.events().count(NotificationEvent.GROUP_CLOSED.value) == 1


async def test_score_change_is_addressed_to_group_members(
    dispatcher, sink, students, settings, test_db,
):
    service = MembershipService(test_db, settings=settings)
    group_id = (await service.create_group(COURSE)).id
    await service.join(group_id, students[0])
    await service.join(group_id, students[1])

    dispatcher.submit(ScoreChanged(
        course_id=COURSE, assessment_id="as-1", assignment_id="a-1",
        delta=3.0, group_id=group_id,
    ))
    await dispatcher.wait_idle(timeout=5)

    [message] = sink.messages
    assert message.event == NotificationEvent.ASSESSMENT_SCORE_CHANGED
    assert message.participant_ids == students[:2]
    assert message.payload["delta"] == 3.0


async def test_event_submitted_after_stop_is_dead_lettered(
    dispatcher, sink, test_session_factory,
):
    await dispatcher.stop(timeout=1)
    dispatcher.submit(_joined())
    await dispatcher.stop(timeout=1)

    assert sink.attempts == 0
    assert [handler for _, handler, _ in dispatcher.dead_letters] == ["forward_to_sink"]
    async with test_session_factory() as db:
        rows = (await db.execute(select(DeadLetter))).scalars().all()
    assert len(rows) == 1
    assert rows[0].attempts == 0
    assert "DispatcherStoppedError" in rows[0].error


# ─── Outbox / shutdown ──────────────────────────────────────────

class BlockingSink:
    """NotificationSink fake whose publish never returns."""

    async def publish(self, message):
        await asyncio.Event().wait()


async def test_stop_dead_letters_events_it_did_not_finish(
    session_scope, test_session_factory,
):
    handled = []

    async def slow_handler(event):
        await asyncio.sleep(0.5)
        handled.append(event)

    dispatcher = EventDispatcher(
        {EventKind.USER_JOINED_GROUP: [slow_handler]},
        dead_letter_store=DeadLetterStore(session_scope),
    )
    for _ in range(3):
        dispatcher.submit(_joined())

    await dispatcher.stop(timeout=0.05)

    assert len(handled) + len(dispatcher.dead_letters) == 3
    async with test_session_factory() as db:
        rows = (await db.execute(select(DeadLetter))).scalars().all()
    assert len(rows) == 3
    assert {row.attempts for row in rows} == {0}
    assert all("DispatcherStoppedError" in row.error for row in rows)


async def test_stop_leaves_outbox_events_for_the_next_process(
    settings, session_scope, sink, students, test_db,
):
    first = build_dispatcher(settings, session_scope, BlockingSink())
    service = MembershipService(test_db, publish=first.submit, settings=settings)
    group_id = (await service.create_group(COURSE)).id
    await service.join(group_id, students[0])
    await asyncio.sleep(0.05)

    await first.stop(timeout=0.05)
    assert first.dead_letters == []

    second = build_dispatcher(settings, session_scope, sink)
    assert await second.recover() == 1
    await second.wait_idle(timeout=5)
    assert sink.events() == [NotificationEvent.USER_JOINED_GROUP.value]
    assert await second.recover() == 0
    await second.stop(timeout=5)


async def test_committed_events_are_recovered_without_submit(
    dispatcher, sink, students, settings, test_db, test_session_factory,
):
    # the process died between commit and submit: nobody published anything
    service = MembershipService(test_db, settings=settings)
    group_id = (await service.create_group(COURSE)).id
    await service.join(group_id, students[0])
    await service.leave(group_id, students[0])

    assert await dispatcher.recover() == 1
    await dispatcher.wait_idle(timeout=5)

    async with test_session_factory() as db:
        assert (await db.get(Group, group_id)).is_closed
    assert sink.events() == [
        NotificationEvent.USER_JOINED_GROUP.value,
        NotificationEvent.USER_LEFT_GROUP.value,
        NotificationEvent.GROUP_CLOSED.value,
    ]
    assert await dispatcher.recover() == 0


async def test_outbox_events_run_in_commit_order_once(
    dispatcher, sink, students, settings, test_db,
):
    captured = []
    service = MembershipService(test_db, publish=captured.append, settings=settings)
    group_id = (await service.create_group(COURSE)).id
    await service.join(group_id, students[0])
    await service.join(group_id, students[1])
    assert captured[0].sequence < captured[1].sequence

    for event in reversed(captured):
        dispatcher.submit(event)
    await dispatcher.wait_idle(timeout=5)
    dispatcher.submit(captured[0])
    await dispatcher.wait_idle(timeout=5)

    assert [m.participant_ids for m in sink.messages] == [[students[0]], [students[1]]]


# ─── Replay ─────────────────────────────────────────────────────

async def _dead_letter_rows(factory):
    async with factory() as db:
        return (await db.execute(select(DeadLetter))).scalars().all()


async def test_failed_replay_keeps_dead_letter_pending(
    dispatcher, sink, test_session_factory,
):
    sink.fail_times = 100
    dispatcher.submit(_joined())
    await dispatcher.wait_idle(timeout=5)

    assert await dispatcher.replay_dead_letters() == 1
    await dispatcher.wait_idle(timeout=5)

    [row] = await _dead_letter_rows(test_session_factory)
    assert row.replayed_at is None
    assert await dispatcher.replay_dead_letters() == 1
    await dispatcher.wait_idle(timeout=5)
    assert len(await _dead_letter_rows(test_session_factory)) == 1

    sink.fail_times = 0
    assert await dispatcher.replay_dead_letters() == 1
    await dispatcher.wait_idle(timeout=5)

    [row] = await _dead_letter_rows(test_session_factory)
    assert row.replayed_at is not None
    assert sink.events() == [NotificationEvent.USER_JOINED_GROUP.value]
    assert await dispatcher.replay_dead_letters() == 0


async def test_in_flight_replay_is_not_queued_twice(session_scope):
    release = asyncio.Event()
    calls = []

    async def flaky(event):
        calls.append(event)
        if len(calls) == 1:
            raise RuntimeError("subscriber down")
        await release.wait()

    dispatcher = EventDispatcher(
        {EventKind.USER_JOINED_GROUP: [flaky]},
        dead_letter_store=DeadLetterStore(session_scope),
        max_retries=0,
    )
    dispatcher.submit(_joined())
    await dispatcher.wait_idle(timeout=5)

    assert await dispatcher.replay_dead_letters() == 1
    assert await dispatcher.replay_dead_letters() == 0
    release.set()
    await dispatcher.wait_idle(timeout=5)

    assert len(calls) == 2
    await dispatcher.stop(timeout=5)


async def test_replay_after_stop_is_refused(dispatcher, sink, test_session_factory):
    sink.fail_times = 100
    dispatcher.submit(_joined())
    await dispatcher.wait_idle(timeout=5)
    await dispatcher.stop(timeout=1)

    assert await dispatcher.replay_dead_letters() == 0
    [row] = await _dead_letter_rows(test_session_factory)
    assert row.replayed_at is None
