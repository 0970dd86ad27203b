"""Group Passwords: bcrypt hashing and verification.

Invariants:
    - Clear-text passwords are never stored, only bcrypt hashes
    - Input longer than bcrypt's 72-byte limit is truncated before hashing and checking
"""

import bcrypt

_BCRYPT_MAX_BYTES = 72


def _to_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_to_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_to_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False
