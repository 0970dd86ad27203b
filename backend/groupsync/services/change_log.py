"""Change Log: per-course, gap-free, append-only change feed written in the mutation's transaction.

Invariants:
    - append() runs inside the caller's open transaction, after the mutation statement,
      and never commits; the caller's commit makes mutation and record visible together
    - Sequences are allocated by incrementing the course's counter row in place; the row
      stays locked until commit, so a course's records commit in sequence order
    - A rolled-back transaction rolls back its counter increment (no gaps)
    - read_since(cursor) returns records with sequence > cursor, ascending; same cursor,
      same suffix

Design Decisions:
    - Counter row over MAX(sequence) + 1: MAX is not locked under read committed and
      two writers would compute the same value
    - Record assembled from values the caller already holds (no reload round-trip)
    - First use of a course inserts its counter row; a concurrent first insert loses on the
      primary key and surfaces as DatabaseError (caller retries)
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from groupsync.core.domain_types import AffectedObject, ChangeType
from groupsync.models.change_record import ChangeRecord, CourseSequence

logger = logging.getLogger(__name__)


class ChangeLog:
    """Append and read the change feed through the given session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        course_id: str,
        change_type: ChangeType,
        affected_object: AffectedObject,
        entity_id: object,
        related_entity_id: object | None = None,
    ) -> int:
        """Append one record to the course's stream. Returns its sequence."""
        sequence = await self._next_sequence(course_id)
        self.db.add(ChangeRecord(
            course_id=course_id,
            sequence=sequence,
            change_type=change_type.value,
            affected_object=affected_object.value,
            entity_id=str(entity_id),
            related_entity_id=(
                str(related_entity_id) if related_entity_id is not None else None
            ),
        ))
        await self.db.flush()
        logger.debug(
            f"Change {change_type.value} {affected_object.value} appended",
            extra={"course_id": course_id, "sequence": sequence},
        )
        return sequence

    async def _next_sequence(self, course_id: str) -> int:
        result = await self.db.execute(
            update(CourseSequence)
            .where(CourseSequence.course_id == course_id)
            .values(last_sequence=CourseSequence.last_sequence + 1)
            .execution_options(synchronize_session=False),
        )
        if result.rowcount == 0:
            self.db.add(CourseSequence(course_id=course_id, last_sequence=1))
            await self.db.flush()
            return 1
        return await self.db.scalar(
            select(CourseSequence.last_sequence)
            .where(CourseSequence.course_id == course_id),
        )

    async def read_since(
        self, course_id: str, cursor: int = 0, limit: int | None = None,
    ) -> list[ChangeRecord]:
        """Records of the course with sequence > cursor, ascending."""
        query = (
            select(ChangeRecord)
            .where(
                ChangeRecord.course_id == course_id,
                ChangeRecord.sequence > cursor,
            )
            .order_by(ChangeRecord.sequence.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def last_sequence(self, course_id: str) -> int:
        """Highest committed sequence of the course (0 when empty)."""
        value = await self.db.scalar(
            select(CourseSequence.last_sequence)
            .where(CourseSequence.course_id == course_id),
        )
        return value or 0
