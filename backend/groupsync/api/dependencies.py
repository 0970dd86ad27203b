"""API Dependencies: per-request services wired to the request's session and the dispatcher.

Invariants:
    - One AsyncSession per request (get_db); services never share sessions across requests
    - Services publish to app.state.dispatcher when the lifespan started one

Design Decisions:
    - Random assignment draws from SystemRandom in the API; services default to the
      deterministic lowest-id choice so tests need no RNG
"""

import random

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from groupsync.core.repository_protocols import EventPublisher
from groupsync.infrastructure.database import get_db
from groupsync.services.change_log import ChangeLog
from groupsync.services.membership import MembershipService
from groupsync.services.participants import ParticipantService
from groupsync.services.registration import RegistrationService
from groupsync.services.transaction import EventIntakeService


def get_publisher(request: Request) -> EventPublisher | None:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return dispatcher.submit if dispatcher is not None else None


def get_membership_service(
    db: AsyncSession = Depends(get_db),
    publish: EventPublisher | None = Depends(get_publisher),
) -> MembershipService:
    return MembershipService(db, publish=publish, rng=random.SystemRandom())


def get_registration_service(
    db: AsyncSession = Depends(get_db),
    publish: EventPublisher | None = Depends(get_publisher),
) -> RegistrationService:
    return RegistrationService(db, publish=publish)


def get_event_intake(
    db: AsyncSession = Depends(get_db),
    publish: EventPublisher | None = Depends(get_publisher),
) -> EventIntakeService:
    return EventIntakeService(db, publish=publish)


def get_participant_service(db: AsyncSession = Depends(get_db)) -> ParticipantService:
    return ParticipantService(db)


def get_change_log(db: AsyncSession = Depends(get_db)) -> ChangeLog:
    return ChangeLog(db)
