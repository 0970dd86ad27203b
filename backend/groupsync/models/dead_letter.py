"""DeadLetter ORM: dispatcher events whose handler exhausted its retries.

Invariants:
    - One row per (event, handler) failure after the retry ceiling
    - payload is the event's JSON dump; event_kind selects the model to rebuild it
    - replayed_at is set once the row has been re-submitted

Design Decisions:
    - Persisted, not in-memory: a dead letter must survive restarts for manual replay
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Text, Integer, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from groupsync.db.base import Base


class DeadLetter(Base):
    """Failed handler invocation kept for replay."""
    __tablename__ = "dead_letters"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    event_kind: Mapped[str] = mapped_column(String(40), nullable=False)
    stream_key: Mapped[str] = mapped_column(String(100), nullable=False)
    handler: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    error: Mapped[str] = mapped_column(Text, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    replayed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
