"""Change Feed Route: cursor-based polling of a course's change records.

Invariants:
    - Returns records with sequence > cursor, ascending; re-polling with the same
      cursor returns the same prefix
    - limit defaults to change_feed_page_size and is capped at change_feed_max_page_size
"""

from fastapi import APIRouter, Depends, Query

from groupsync.api.dependencies import get_change_log
from groupsync.config import get_settings
from groupsync.schemas.change_feed import ChangeFeedPage, ChangeRecordResponse
from groupsync.services.change_log import ChangeLog

router = APIRouter(prefix="/api/v1/courses", tags=["changes"])


@router.get("/{course_id}/changes", response_model=ChangeFeedPage)
async def read_changes(
    course_id: str,
    cursor: int = Query(0, ge=0),
    limit: int | None = Query(None, ge=1),
    changes: ChangeLog = Depends(get_change_log),
):
    settings = get_settings()
    page_size = min(limit or settings.change_feed_page_size, settings.change_feed_max_page_size)
    # one extra row tells whether another page exists
    records = await changes.read_since(course_id, cursor, page_size + 1)
    page = records[:page_size]
    return ChangeFeedPage(
        changes=[ChangeRecordResponse.model_validate(r) for r in page],
        next_cursor=page[-1].sequence if page else cursor,
        has_more=len(records) > page_size,
    )
