"""Group Routes: course groups, membership and random assignment.

Invariants:
    - Routes only translate HTTP to service calls; every rule lives in MembershipService
    - Domain errors propagate to the global GroupSyncError handler (structured JSON)
    - leave answers 200 with removed=false for a non-member (idempotent)
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from groupsync.api.dependencies import get_membership_service, get_participant_service
from groupsync.core.errors import ResourceNotFoundError
from groupsync.schemas.group import (
    GroupCreate,
    GroupListResponse,
    GroupPatch,
    GroupResponse,
    JoinRequest,
    MembershipResponse,
    RandomAssignRequest,
)
from groupsync.schemas.participant import ParticipantCreate, ParticipantResponse
from groupsync.services.membership import GroupFilter, MembershipService
from groupsync.services.participants import ParticipantService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["groups"])


# ─── Course scope ───────────────────────────────────────────────

@router.post(
    "/courses/{course_id}/participants", response_model=ParticipantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_participant(
    course_id: str, body: ParticipantCreate,
    participants: ParticipantService = Depends(get_participant_service),
):
    """Sign a user up to the course."""
    participant = await participants.add_participant(
        course_id, body.user_id, body.role, body.username,
    )
    return ParticipantResponse(
        id=participant.id,
        course_id=participant.course_id,
        user_id=participant.user_id,
        username=participant.username,
        role=participant.role,
        created_at=participant.created_at,
    )


@router.post(
    "/courses/{course_id}/groups", response_model=GroupResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_group(
    course_id: str, body: GroupCreate,
    service: MembershipService = Depends(get_membership_service),
):
    group = await service.create_group(
        course_id, name=body.name, password=body.password, is_closed=body.is_closed,
    )
    return GroupResponse.from_group(group, size=0)


@router.get("/courses/{course_id}/groups", response_model=GroupListResponse)
async def list_groups(
    course_id: str,
    name: str | None = Query(None, max_length=100),
    is_closed: bool | None = None,
    min_size: int | None = Query(None, ge=0),
    max_size: int | None = Query(None, ge=0),
    skip: int = Query(0, ge=0),
    take: int | None = Query(None, ge=1, le=500),
    service: MembershipService = Depends(get_membership_service),
):
    groups, total = await service.list_groups(course_id, GroupFilter(
        name=name, is_closed=is_closed, min_size=min_size, max_size=max_size,
        skip=skip, take=take,
    ))
    return GroupListResponse(
        groups=[GroupResponse.from_group(g.group, g.size) for g in groups],
        total=total,
    )


@router.post("/courses/{course_id}/groups/assign-random", response_model=GroupResponse)
async def assign_random_group(
    course_id: str, body: RandomAssignRequest,
    service: MembershipService = Depends(get_membership_service),
):
    """Place the participant in a random open group with free capacity."""
    group = await service.assign_random_group(
        course_id, body.participant_id, body.candidate_group_ids,
    )
    return GroupResponse.from_group(group, await service.member_count(group.id))


# ─── Group scope ────────────────────────────────────────────────

@router.get("/groups/{group_id}", response_model=GroupResponse)
async def get_group(
    group_id: UUID, service: MembershipService = Depends(get_membership_service),
):
    group = await service.get_group(group_id)
    return GroupResponse.from_group(group, await service.member_count(group_id))


@router.patch("/groups/{group_id}", response_model=GroupResponse)
async def update_group(
    group_id: UUID, body: GroupPatch,
    service: MembershipService = Depends(get_membership_service),
):
    """Rename, close/reopen, or set/clear ("") the password."""
    group = await service.rename_or_close(group_id, body.to_update())
    return GroupResponse.from_group(group, await service.member_count(group_id))


@router.delete("/groups/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_group(
    group_id: UUID, service: MembershipService = Depends(get_membership_service),
):
    if not await service.delete_group(group_id):
        raise ResourceNotFoundError("Group", str(group_id))


@router.get("/groups/{group_id}/members", response_model=list[ParticipantResponse])
async def get_members(
    group_id: UUID, service: MembershipService = Depends(get_membership_service),
):
    return [
        ParticipantResponse(
            id=p.id, course_id=p.course_id, user_id=p.user_id,
            username=p.username, role=p.role, created_at=p.created_at,
        )
        for p in await service.get_members(group_id)
    ]


@router.post(
    "/groups/{group_id}/members", response_model=MembershipResponse,
    status_code=status.HTTP_201_CREATED,
)
async def join_group(
    group_id: UUID, body: JoinRequest,
    service: MembershipService = Depends(get_membership_service),
):
    membership = await service.join(group_id, body.participant_id, body.password)
    return MembershipResponse(
        group_id=membership.group_id,
        participant_id=membership.participant_id,
        joined_at=membership.joined_at,
    )


@router.delete("/groups/{group_id}/members/{participant_id}")
async def leave_group(
    group_id: UUID, participant_id: UUID,
    service: MembershipService = Depends(get_membership_service),
):
    removed = await service.leave(group_id, participant_id)
    return {"removed": removed}
