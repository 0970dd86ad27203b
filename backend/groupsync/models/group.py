"""Group ORM: a named, closable collection of participants within a course.

Invariants:
    - (course_id, name) is unique; generated names come from the course's name schema
    - is_closed == True forbids new joins
    - password_hash is a bcrypt hash or NULL (no password)

Design Decisions:
    - Memberships are a separate table without ORM cascade: every membership write
      is an explicit statement paired with its change record
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Boolean, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from groupsync.db.base import Base


class Group(Base):
    """Group of a course."""
    __tablename__ = "groups"
    __table_args__ = (
        UniqueConstraint("course_id", "name", name="uq_groups_course_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    course_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
