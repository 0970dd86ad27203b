"""Registration Manager: snapshots, extension, removals and batched notifications.

Invariants:
    - register(a, g, [p1, p2]) then register(a, g, [p2, p3]) → one registration {p1, p2, p3}
    - Creation records insert, extension records update, no-op records nothing
    - Group/all removals return counts; participant removal of an absent registration is NotFound
    - One RegistrationsRemoved per course per removal, listing every affected participant
    - Removing the last member of a registration removes the registration too
"""

import pytest

from groupsync.core.domain_types import AffectedObject, ChangeType
from groupsync.core.errors import ResourceNotFoundError
from groupsync.core.events import RegistrationsRemoved
from groupsync.services.change_log import ChangeLog
from groupsync.services.registration import RegistrationService

COURSE = "course-2026"
ASSIGNMENT = "assignment-1"


@pytest.fixture
def registrations(test_db, published):
    return RegistrationService(test_db, publish=published.append)


async def _registration_changes(factory):
    async with factory() as db:
        return [
            r for r in await ChangeLog(db).read_since(COURSE)
            if r.affected_object in (
                AffectedObject.ASSIGNMENT_REGISTRATION.value,
                AffectedObject.REGISTRATION_MEMBER.value,
            )
        ]


async def test_registering_twice_merges_members(
    membership, registrations, students, test_session_factory,
):
    p1, p2, p3 = students[:3]
    group_id = (await membership.create_group(COURSE)).id

    first = await registrations.register_group(ASSIGNMENT, group_id, [p1, p2])
    second = await registrations.register_group(ASSIGNMENT, group_id, [p2, p3])

    assert first.id == second.id
    assert set(second.member_ids) == {p1, p2, p3}
    views = await registrations.get_registrations(ASSIGNMENT)
    assert len(views) == 1
    assert set(views[0].member_ids) == {p1, p2, p3}

    changes = await _registration_changes(test_session_factory)
    assert [r.change_type for r in changes] == [
        ChangeType.INSERT.value, ChangeType.UPDATE.value,
    ]


async def test_reregistering_same_members_is_noop(
    membership, registrations, students, test_session_factory,
):
    group_id = (await membership.create_group(COURSE)).id
    await registrations.register_group(ASSIGNMENT, group_id, students[:2])
    view = await registrations.register_group(
        ASSIGNMENT, group_id, [students[1], students[0], students[0]],
    )

    assert set(view.member_ids) == set(students[:2])
    assert len(await _registration_changes(test_session_factory)) == 1


async def test_register_unknown_participant_is_not_found(
    membership, registrations, outsider,
):
    group_id = (await membership.create_group(COURSE)).id
    with pytest.raises(ResourceNotFoundError):
        await registrations.register_group(ASSIGNMENT, group_id, [outsider])


async def test_register_groups_snapshots_members_and_collects_failures(
    membership, registrations, students,
):
    g1 = (await membership.create_group(COURSE)).id
    g2 = (await membership.create_group(COURSE)).id
    await membership.join(g1, students[0])
    await membership.join(g2, students[1])
    await membership.join(g2, students[2])
    missing = students[3]  # not a group id

    result = await registrations.register_groups(ASSIGNMENT, [g1, g2, missing])

    by_group = {v.group_id: set(v.member_ids) for v in result.registrations}
    assert by_group == {g1: {students[0]}, g2: {students[1], students[2]}}
    assert [(f.group_id, f.code) for f in result.failures] == [
        (missing, "RESOURCE_NOT_FOUND"),
    ]


async def test_register_course_groups_skips_empty_groups(
    membership, registrations, students,
):
    g1 = (await membership.create_group(COURSE)).id
    await membership.create_group(COURSE)
    await membership.join(g1, students[0])

    result = await registrations.register_course_groups(ASSIGNMENT, COURSE)

    assert [v.group_id for v in result.registrations] == [g1]
    assert await registrations.has_any_registration(ASSIGNMENT)
    assert not await registrations.has_any_registration("assignment-2")


async def test_remove_for_group_batches_notification(
    membership, registrations, students, published, test_session_factory,
):
    group_id = (await membership.create_group(COURSE)).id
    await registrations.register_group(ASSIGNMENT, group_id, students[:3])

    removed = await registrations.remove_for_group(ASSIGNMENT, group_id)

    assert removed == 1
    events = [e for e in published if isinstance(e, RegistrationsRemoved)]
    assert len(events) == 1
    assert set(events[0].participant_ids) == set(students[:3])
    assert events[0].group_id == group_id
    assert not await registrations.has_any_registration(ASSIGNMENT)
    changes = await _registration_changes(test_session_factory)
    assert changes[-1].change_type == ChangeType.REMOVE.value


async def test_remove_for_group_without_registration_returns_zero(
    membership, registrations, published,
):
    group_id = (await membership.create_group(COURSE)).id
    assert await registrations.remove_for_group(ASSIGNMENT, group_id) == 0
    assert published == []


async def test_remove_all_counts_every_registration(
    membership, registrations, students, published,
):
    g1 = (await membership.create_group(COURSE)).id
    g2 = (await membership.create_group(COURSE)).id
    await registrations.register_group(ASSIGNMENT, g1, students[:2])
    await registrations.register_group(ASSIGNMENT, g2, students[2:])

    assert await registrations.remove_all(ASSIGNMENT) == 2

    events = [e for e in published if isinstance(e, RegistrationsRemoved)]
    assert len(events) == 1
    assert set(events[0].participant_ids) == set(students)
    assert await registrations.get_registrations(ASSIGNMENT) == []


async def test_remove_for_participant(
    membership, registrations, students, published, test_session_factory,
):
    group_id = (await membership.create_group(COURSE)).id
    await registrations.register_group(ASSIGNMENT, group_id, students[:2])

    await registrations.remove_for_participant(ASSIGNMENT, students[0])

    view = await registrations.get_registration_of_group(ASSIGNMENT, group_id)
    assert view.member_ids == [students[1]]
    last = (await _registration_changes(test_session_factory))[-1]
    event = published[-1]
    assert event.outbox_id is not None
    assert event == RegistrationsRemoved(
        course_id=COURSE, assignment_id=ASSIGNMENT,
        group_id=group_id, participant_ids=[students[0]],
        sequence=last.sequence, outbox_id=event.outbox_id,
    )
    assert (last.change_type, last.affected_object, last.entity_id) == (
        ChangeType.REMOVE.value, AffectedObject.REGISTRATION_MEMBER.value, str(students[0]),
    )

    with pytest.raises(ResourceNotFoundError):
        await registrations.remove_for_participant(ASSIGNMENT, students[0])


async def test_registration_of_participant(membership, registrations, students):
    group_id = (await membership.create_group(COURSE)).id
    await registrations.register_group(ASSIGNMENT, group_id, students[:1])

    view = await registrations.get_registration_of_participant(ASSIGNMENT, students[0])

    assert view.group_id == group_id
    with pytest.raises(ResourceNotFoundError):
        await registrations.get_registration_of_participant(ASSIGNMENT, students[1])


async def test_removing_last_member_removes_registration(
    membership, registrations, students, published, test_session_factory,
):
    group_id = (await membership.create_group(COURSE)).id
    await registrations.register_group(ASSIGNMENT, group_id, students[:1])
    registration_id = (
        await registrations.get_registration_of_group(ASSIGNMENT, group_id)
    ).id

    await registrations.remove_for_participant(ASSIGNMENT, students[0])

    assert not await registrations.has_any_registration(ASSIGNMENT)
    assert await registrations.get_registrations(ASSIGNMENT) == []
    member, registration = (await _registration_changes(test_session_factory))[-2:]
    assert (member.change_type, member.affected_object, member.entity_id) == (
        ChangeType.REMOVE.value, AffectedObject.REGISTRATION_MEMBER.value, str(students[0]),
    )
    assert (registration.change_type, registration.affected_object) == (
        ChangeType.REMOVE.value, AffectedObject.ASSIGNMENT_REGISTRATION.value,
    )
    assert registration.entity_id == str(registration_id)
    assert published[-1].sequence == registration.sequence
