"""ChangeRecord ORM: append-only per-course change feed (CDC).

Invariants:
    - (course_id, sequence) is unique; sequences are gap-free per course
    - Rows are written only inside the transaction of the mutation they describe
    - Never updated or deleted (retention is an external concern)
    - CourseSequence holds the last allocated sequence per course

Design Decisions:
    - Per-course counter row over a global sequence: the counter row lock orders
      concurrent appends of one course, and a rollback rolls the increment back
    - entity ids stored as strings: one column serves UUID and external ids
"""

from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from groupsync.db.base import Base


class ChangeRecord(Base):
    """One tracked mutation."""
    __tablename__ = "change_records"
    __table_args__ = (
        UniqueConstraint("course_id", "sequence", name="uq_change_records_course_sequence"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[str] = mapped_column(String(100), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    change_type: Mapped[str] = mapped_column(String(10), nullable=False)
    affected_object: Mapped[str] = mapped_column(String(40), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    related_entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class CourseSequence(Base):
    """Sequence counter of one course's change stream."""
    __tablename__ = "course_sequences"

    course_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    last_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
