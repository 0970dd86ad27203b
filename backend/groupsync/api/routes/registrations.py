"""Registration Routes: register groups for assignments and remove registrations.

Invariants:
    - Without member_ids, registering a group snapshots its current members
    - Group/all removals answer with the number of registrations removed (0 is not an error)
    - Participant removal answers 404 when the participant has no registration
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status

from groupsync.api.dependencies import get_registration_service
from groupsync.schemas.registration import (
    RegisterGroupRequest,
    RegistrationResponse,
    RemovalResponse,
)
from groupsync.services.registration import RegistrationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/assignments", tags=["registrations"])


@router.get("/{assignment_id}/registrations", response_model=list[RegistrationResponse])
async def get_registrations(
    assignment_id: str,
    service: RegistrationService = Depends(get_registration_service),
):
    return [
        RegistrationResponse.from_view(v)
        for v in await service.get_registrations(assignment_id)
    ]


@router.post(
    "/{assignment_id}/registrations/groups/{group_id}",
    response_model=RegistrationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_group(
    assignment_id: str, group_id: UUID,
    body: RegisterGroupRequest | None = None,
    service: RegistrationService = Depends(get_registration_service),
):
    """Create the registration or extend it with missing members."""
    member_ids = body.member_ids if body is not None else None
    if member_ids is None:
        member_ids = [m.id for m in await service.groups.get_members(group_id)]
    view = await service.register_group(assignment_id, group_id, member_ids)
    return RegistrationResponse.from_view(view)


@router.delete(
    "/{assignment_id}/registrations/groups/{group_id}", response_model=RemovalResponse,
)
async def remove_group_registration(
    assignment_id: str, group_id: UUID,
    service: RegistrationService = Depends(get_registration_service),
):
    return RemovalResponse(removed=await service.remove_for_group(assignment_id, group_id))


@router.delete(
    "/{assignment_id}/registrations/participants/{participant_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def remove_participant_registration(
    assignment_id: str, participant_id: UUID,
    service: RegistrationService = Depends(get_registration_service),
):
    await service.remove_for_participant(assignment_id, participant_id)


@router.delete("/{assignment_id}/registrations", response_model=RemovalResponse)
async def remove_all_registrations(
    assignment_id: str,
    service: RegistrationService = Depends(get_registration_service),
):
    return RemovalResponse(removed=await service.remove_all(assignment_id))
