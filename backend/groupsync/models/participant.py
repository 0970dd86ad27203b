"""Participant ORM: a user's role-scoped membership in a course.

Invariants:
    - (course_id, user_id) is unique: a user joins a course at most once
    - role is one of CourseRole (student, tutor, lecturer)

Design Decisions:
    - course_id / user_id are plain strings: courses and users are owned by the wider backend
    - No relationships: membership queries are explicit statements in the services
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from groupsync.db.base import Base


class Participant(Base):
    """Participant of a course."""
    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("course_id", "user_id", name="uq_participants_course_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    course_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    username: Mapped[str | None] = mapped_column(String(100), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="student")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
