"""Passwords: bcrypt hashing of group passwords."""

from groupsync.core.passwords import hash_password, verify_password


def test_hash_is_not_the_password():
    hashed = hash_password("s3cret")
    assert hashed != "s3cret"
    assert hashed.startswith("$2")


def test_verify_accepts_correct_and_rejects_wrong():
    hashed = hash_password("s3cret")
    assert verify_password("s3cret", hashed)
    assert not verify_password("wrong", hashed)


def test_malformed_hash_never_verifies():
    assert not verify_password("s3cret", "not-a-bcrypt-hash")
