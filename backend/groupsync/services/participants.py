"""Participants: sign a user up to a course with a role.

Invariants:
    - (course_id, user_id) is unique; a second sign-up is a Conflict (AlreadyParticipantError)
    - Participants are not a tracked entity: no change record is appended
"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from groupsync.core.domain_types import CourseRole
from groupsync.core.errors import (
    AlreadyParticipantError,
    ErrorContext,
    ResourceNotFoundError,
)
from groupsync.models.participant import Participant
from groupsync.services.transaction import transaction_script

logger = logging.getLogger(__name__)


class ParticipantService:
    def __init__(self, db: AsyncSession):
        self.db = db

    @transaction_script
    async def add_participant(
        self,
        course_id: str,
        user_id: str,
        role: CourseRole = CourseRole.STUDENT,
        username: str | None = None,
    ) -> Participant:
        participant = Participant(
            course_id=course_id, user_id=user_id,
            role=CourseRole(role).value, username=username,
        )
        self.db.add(participant)
        try:
            await self.db.flush()
        except IntegrityError:
            raise AlreadyParticipantError(ErrorContext(course_id=course_id))
        await self.db.commit()
        logger.info(
            f"User {user_id} signed up as {participant.role}",
            extra={"course_id": course_id, "participant_id": participant.id},
        )
        return participant

    async def get_participant(self, participant_id: UUID) -> Participant:
        participant = await self.db.get(Participant, participant_id)
        if participant is None:
            raise ResourceNotFoundError("Participant", str(participant_id))
        return participant

    async def find_by_user(self, course_id: str, user_id: str) -> Participant:
        result = await self.db.execute(
            select(Participant).where(
                Participant.course_id == course_id,
                Participant.user_id == user_id,
            ),
        )
        participant = result.scalar_one_or_none()
        if participant is None:
            raise ResourceNotFoundError(
                "Participant", f"{user_id} in course {course_id}",
                ErrorContext(course_id=course_id),
            )
        return participant
