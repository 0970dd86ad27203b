"""Registration Schemas: request/response models for assignment registrations.

Invariants:
    - RegisterGroupRequest.member_ids None means "snapshot the group's current members"
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class RegisterGroupRequest(BaseModel):
    member_ids: list[UUID] | None = None


class RegistrationResponse(BaseModel):
    id: UUID
    assignment_id: str
    course_id: str
    group_id: UUID | None
    created_at: datetime
    member_ids: list[UUID]

    @classmethod
    def from_view(cls, view) -> "RegistrationResponse":
        return cls(
            id=view.id,
            assignment_id=view.assignment_id,
            course_id=view.course_id,
            group_id=view.group_id,
            created_at=view.created_at,
            member_ids=list(view.member_ids),
        )


class RemovalResponse(BaseModel):
    removed: int
