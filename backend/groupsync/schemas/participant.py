"""Participant Schemas: course sign-up request/response."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from groupsync.core.domain_types import CourseRole


class ParticipantCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=100)
    username: str | None = Field(None, max_length=100)
    role: CourseRole = CourseRole.STUDENT


class ParticipantResponse(BaseModel):
    id: UUID
    course_id: str
    user_id: str
    username: str | None = None
    role: CourseRole
    created_at: datetime
