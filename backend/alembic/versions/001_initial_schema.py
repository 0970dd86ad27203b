"""Initial schema: participants, groups, memberships, registrations, change feed, dead letters.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "participants",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("course_id", sa.String(100), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="student"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("course_id", "user_id", name="uq_participants_course_user"),
    )
    op.create_index("ix_participants_course_id", "participants", ["course_id"])

    op.create_table(
        "groups",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("course_id", sa.String(100), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("password_hash", sa.String(100), nullable=True),
        sa.Column("is_closed", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("course_id", "name", name="uq_groups_course_name"),
    )
    op.create_index("ix_groups_course_id", "groups", ["course_id"])

    op.create_table(
        "group_memberships",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("group_id", UUID(as_uuid=True), sa.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("participant_id", UUID(as_uuid=True), sa.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("group_id", "participant_id", name="uq_memberships_group_participant"),
    )
    op.create_index("ix_group_memberships_group_id", "group_memberships", ["group_id"])
    op.create_index("ix_group_memberships_participant_id", "group_memberships", ["participant_id"])

    op.create_table(
        "assignment_registrations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("assignment_id", sa.String(64), nullable=False),
        sa.Column("course_id", sa.String(100), nullable=False),
        sa.Column("group_id", UUID(as_uuid=True), sa.ForeignKey("groups.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("assignment_id", "group_id", name="uq_registrations_assignment_group"),
    )
    op.create_index("ix_assignment_registrations_assignment_id", "assignment_registrations", ["assignment_id"])

    op.create_table(
        "registration_members",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "registration_id", UUID(as_uuid=True),
            sa.ForeignKey("assignment_registrations.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("participant_id", UUID(as_uuid=True), sa.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint(
            "registration_id", "participant_id",
            name="uq_registration_members_registration_participant",
        ),
    )
    op.create_index("ix_registration_members_registration_id", "registration_members", ["registration_id"])
    op.create_index("ix_registration_members_participant_id", "registration_members", ["participant_id"])

    op.create_table(
        "course_sequences",
        sa.Column("course_id", sa.String(100), primary_key=True),
        sa.Column("last_sequence", sa.Integer, nullable=False, server_default="0"),
    )

    op.create_table(
        "change_records",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("course_id", sa.String(100), nullable=False),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("change_type", sa.String(10), nullable=False),
        sa.Column("affected_object", sa.String(40), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("related_entity_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("course_id", "sequence", name="uq_change_records_course_sequence"),
    )

    op.create_table(
        "dead_letters",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("event_kind", sa.String(40), nullable=False),
        sa.Column("stream_key", sa.String(100), nullable=False),
        sa.Column("handler", sa.String(100), nullable=False),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("error", sa.Text, nullable=False),
        sa.Column("attempts", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("replayed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_dead_letters_pending", "dead_letters", ["created_at"],
        postgresql_where=sa.text("replayed_at IS NULL"),
    )


def downgrade() -> None:
    op.drop_table("dead_letters")
    op.drop_table("change_records")
    op.drop_table("course_sequences")
    op.drop_table("registration_members")
    op.drop_table("assignment_registrations")
    op.drop_table("group_memberships")
    op.drop_table("groups")
    op.drop_table("participants")
