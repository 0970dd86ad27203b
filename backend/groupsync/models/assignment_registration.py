"""AssignmentRegistration ORM: binding of a group (with member snapshot) to an assignment.

Invariants:
    - (assignment_id, group_id) is unique: one registration per group and assignment
    - Members are a snapshot taken at registration time (RegistrationMember rows),
      later group changes do not touch them
    - (registration_id, participant_id) is unique; re-adding a member is a no-op

Design Decisions:
    - course_id denormalized: change records and notifications need it without a join
    - group_id nullable with SET NULL: the snapshot outlives a deleted group
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from groupsync.db.base import Base


class AssignmentRegistration(Base):
    """Registration of a group for an assignment."""
    __tablename__ = "assignment_registrations"
    __table_args__ = (
        UniqueConstraint("assignment_id", "group_id", name="uq_registrations_assignment_group"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    assignment_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    course_id: Mapped[str] = mapped_column(String(100), nullable=False)
    group_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("groups.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class RegistrationMember(Base):
    """Snapshot member of a registration."""
    __tablename__ = "registration_members"
    __table_args__ = (
        UniqueConstraint(
            "registration_id", "participant_id",
            name="uq_registration_members_registration_participant",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    registration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("assignment_registrations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    participant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
