"""Membership ORM: (group, participant) edge.

Invariants:
    - (group_id, participant_id) is unique; a duplicate insert is a Conflict
    - A participant may hold memberships in several groups

Design Decisions:
    - The unique constraint is the only mutual-exclusion primitive for concurrent joins
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from groupsync.db.base import Base


class Membership(Base):
    """Group membership edge."""
    __tablename__ = "group_memberships"
    __table_args__ = (
        UniqueConstraint("group_id", "participant_id", name="uq_memberships_group_participant"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    group_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    participant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
