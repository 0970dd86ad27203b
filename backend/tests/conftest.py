"""Root conftest: shared test configuration."""

import os

# Ensure tests never reach a real database or real webhook subscribers
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///test.db",
)
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")
