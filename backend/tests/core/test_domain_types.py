"""Domain Types: identity wrappers and enum values as they appear on the wire.

Tests:
    - NewType wrappers are transparent
    - Change feed and notification enums keep their serialized values
"""

from uuid import uuid4

from groupsync.core.domain_types import (
    AffectedObject, ChangeType, CourseId, CourseRole, EventKind,
    GroupId, NotificationEvent, ParticipantId,
)


def test_identity_types_wrap_values():
    uid = uuid4()
    assert GroupId(uid) == uid
    assert ParticipantId(uid) == uid
    assert CourseId("course-1") == "course-1"


def test_change_types_have_three_kinds():
    assert [c.value for c in ChangeType] == ["insert", "update", "remove"]


def test_affected_objects_cover_tracked_tables():
    assert set(AffectedObject) == {
        AffectedObject.GROUP,
        AffectedObject.MEMBERSHIP,
        AffectedObject.ASSIGNMENT_REGISTRATION,
        AffectedObject.REGISTRATION_MEMBER,
    }


def test_every_event_kind_has_a_notification_name():
    names = {n.value for n in NotificationEvent}
    for kind in EventKind:
        expected = "ASSESSMENT_SCORE_CHANGED" if kind == EventKind.SCORE_CHANGED else kind.value.upper()
        assert expected in names


def test_enums_compare_to_their_string_value():
    assert CourseRole.STUDENT == "student"
    assert NotificationEvent.GROUP_CLOSED.value == "GROUP_CLOSED"
