"""Group Update: tri-state password and partial updates.

Tests:
    - "" clears, None or absent keeps, any other value sets
    - is_empty only for an update that touches nothing
"""

from groupsync.core.group_update import (
    CLEAR, UNCHANGED, Clear, GroupUpdate, SetTo, Unchanged, from_raw_password,
)


def test_empty_string_clears_password():
    assert isinstance(from_raw_password(""), Clear)


def test_missing_or_null_password_is_unchanged():
    assert isinstance(from_raw_password(None), Unchanged)
    assert isinstance(from_raw_password("secret", present=False), Unchanged)


def test_value_sets_password():
    assert from_raw_password("secret") == SetTo("secret")


def test_default_update_is_empty():
    assert GroupUpdate().is_empty()


def test_update_with_any_field_is_not_empty():
    assert not GroupUpdate(name="Team A").is_empty()
    assert not GroupUpdate(is_closed=False).is_empty()
    assert not GroupUpdate(password=CLEAR).is_empty()
    assert GroupUpdate(password=UNCHANGED).is_empty()
