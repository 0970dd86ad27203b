"""Group Schemas: Pydantic request/response models for group and membership endpoints.

Invariants:
    - Names are stripped and 1-100 chars
    - GroupPatch distinguishes a missing password (keep) from "" (clear)
    - Responses never carry the password hash, only has_password

Design Decisions:
    - to_update() builds the tri-state GroupUpdate from model_fields_set, so the
      wire convention is translated once, at the boundary
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from groupsync.core.group_update import GroupUpdate, from_raw_password


def _strip_name(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("name cannot be empty or whitespace")
    return v


class GroupCreate(BaseModel):
    """Group creation. Without a name, the course's name schema is used."""
    name: str | None = Field(None, max_length=100)
    password: str | None = Field(None, min_length=1, max_length=72)
    is_closed: bool = False

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str | None) -> str | None:
        return _strip_name(v)


class GroupPatch(BaseModel):
    """Partial group update: rename, close/reopen, set or clear the password."""
    name: str | None = Field(None, max_length=100)
    is_closed: bool | None = None
    password: str | None = Field(None, max_length=72)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str | None) -> str | None:
        return _strip_name(v)

    def to_update(self) -> GroupUpdate:
        return GroupUpdate(
            name=self.name,
            is_closed=self.is_closed,
            password=from_raw_password(
                self.password, present="password" in self.model_fields_set,
            ),
        )


class GroupResponse(BaseModel):
    id: UUID
    course_id: str
    name: str
    is_closed: bool
    has_password: bool
    size: int | None = None
    created_at: datetime

    @classmethod
    def from_group(cls, group, size: int | None = None) -> "GroupResponse":
        return cls(
            id=group.id,
            course_id=group.course_id,
            name=group.name,
            is_closed=group.is_closed,
            has_password=group.password_hash is not None,
            size=size,
            created_at=group.created_at,
        )


class GroupListResponse(BaseModel):
    groups: list[GroupResponse]
    total: int


class JoinRequest(BaseModel):
    participant_id: UUID
    password: str | None = Field(None, max_length=72)


class RandomAssignRequest(BaseModel):
    participant_id: UUID
    candidate_group_ids: list[UUID] | None = None


class MembershipResponse(BaseModel):
    group_id: UUID
    participant_id: UUID
    joined_at: datetime
