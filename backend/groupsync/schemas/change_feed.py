"""Change Feed Schemas: cursor page of change records, and score-change submissions.

Invariants:
    - next_cursor is the last sequence on the page, or the request cursor when empty
    - has_more is True when records beyond the page existed at read time
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from groupsync.core.domain_types import AffectedObject, ChangeType


class ChangeRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    change_type: ChangeType
    affected_object: AffectedObject
    entity_id: str
    related_entity_id: str | None = None
    created_at: datetime


class ChangeFeedPage(BaseModel):
    changes: list[ChangeRecordResponse]
    next_cursor: int
    has_more: bool


class ScoreChangeRequest(BaseModel):
    """Score change reported by the assessment workflow."""
    assignment_id: str = Field(min_length=1, max_length=64)
    delta: float
    group_id: UUID | None = None
    user_id: str | None = Field(None, max_length=100)
