"""Assessment Event Route: hand score changes to the dispatcher.

Invariants:
    - Answers 202 once the event is committed to the outbox; notification happens
      on the course's dispatcher stream
    - Without a running dispatcher the request fails (503) instead of parking the event
"""

import logging

from fastapi import APIRouter, Depends, Request, status

from groupsync.api.dependencies import get_event_intake
from groupsync.core.errors import ErrorContext, NotificationDeliveryError
from groupsync.core.events import ScoreChanged
from groupsync.schemas.change_feed import ScoreChangeRequest
from groupsync.services.transaction import EventIntakeService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/courses", tags=["assessments"])


@router.post(
    "/{course_id}/assessments/{assessment_id}/score-changes",
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_score_change(
    course_id: str,
    assessment_id: str,
    body: ScoreChangeRequest,
    request: Request,
    intake: EventIntakeService = Depends(get_event_intake),
):
    if getattr(request.app.state, "dispatcher", None) is None:
        raise NotificationDeliveryError(
            "event dispatcher is not running", "dispatcher",
            ErrorContext(course_id=course_id, assignment_id=body.assignment_id),
        )
    event = await intake.accept(ScoreChanged(
        course_id=course_id,
        assessment_id=assessment_id,
        assignment_id=body.assignment_id,
        delta=body.delta,
        group_id=body.group_id,
        user_id=body.user_id,
    ))
    logger.info(
        f"Score change of assessment {assessment_id} accepted",
        extra={"course_id": course_id, "assignment_id": body.assignment_id, "outbox_id": event.outbox_id},
    )
    return {"status": "accepted"}
