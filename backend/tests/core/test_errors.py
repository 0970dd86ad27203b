"""Error Hierarchy: codes, categories and HTTP statuses of domain errors.

Tests:
    - Duplicate join reports "already a member"
    - Each taxonomy kind maps to its category and status
    - to_response() carries the context ids
"""

from groupsync.core.errors import (
    AlreadyMemberError,
    ConflictError,
    DatabaseError,
    ErrorCategory,
    ErrorContext,
    GroupClosedError,
    GroupSyncError,
    InvalidGroupPasswordError,
    InvalidStateError,
    NoAvailableGroupError,
    ResourceNotFoundError,
)


def test_already_member_message():
    err = AlreadyMemberError()
    assert "already a member" in err.message
    assert isinstance(err, ConflictError)
    assert err.http_status == 409
    assert err.category == ErrorCategory.CONFLICT


def test_taxonomy_statuses():
    assert ResourceNotFoundError("Group", "g-1").http_status == 404
    assert GroupClosedError().http_status == 409
    assert InvalidGroupPasswordError().http_status == 403
    assert NoAvailableGroupError().http_status == 409
    assert DatabaseError("down", "commit").http_status == 503


def test_invalid_state_kinds_share_category():
    for err in (GroupClosedError(), InvalidGroupPasswordError()):
        assert isinstance(err, InvalidStateError)
        assert err.category == ErrorCategory.INVALID_STATE


def test_to_response_includes_context():
    err = GroupClosedError(ErrorContext(course_id="c-1", group_id="g-1"))
    body = err.to_response()["error"]
    assert body["code"] == "GROUP_CLOSED"
    assert body["category"] == "invalid_state"
    assert body["context"]["course_id"] == "c-1"
    assert body["context"]["group_id"] == "g-1"


def test_all_errors_share_base():
    assert issubclass(NoAvailableGroupError, GroupSyncError)
    assert issubclass(DatabaseError, GroupSyncError)
