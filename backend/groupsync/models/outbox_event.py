"""OutboxEvent ORM: domain events staged in the transaction of the mutation that raised them.

Invariants:
    - Written before commit, next to the ChangeRecord: a committed mutation always has
      its events on disk, whatever happens to the process afterwards
    - dispatched_at is set once every routed handler ran (succeeded or was dead-lettered)
    - Rows of one course are inserted while its course_sequences row is locked, so
      id order within a course is commit order

Design Decisions:
    - Integer autoincrement id: the dispatcher reads a course's pending rows by id
    - payload is the event's JSON dump (without outbox_id); event_kind selects the model
"""

from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, JSON, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from groupsync.db.base import Base


class OutboxEvent(Base):
    """Committed event awaiting dispatch."""
    __tablename__ = "event_outbox"
    __table_args__ = (
        Index("ix_event_outbox_course_id_id", "course_id", "id"),
        Index(
            "ix_event_outbox_pending", "course_id",
            postgresql_where=text("dispatched_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[str] = mapped_column(String(100), nullable=False)
    event_kind: Mapped[str] = mapped_column(String(40), nullable=False)
    sequence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    dispatched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
