"""Membership Manager: group/participant invariants and group lifecycle, one transaction per operation.

Invariants:
    - Every mutation of groups / group_memberships appends exactly one ChangeRecord per
      affected row in the same transaction, before commit
    - join reads the group FOR UPDATE: a concurrent close_if_empty re-count waits for it
    - Duplicate (group, participant) is a Conflict (AlreadyMemberError), never absorbed
    - leave is idempotent: False and no ChangeRecord when the edge does not exist
    - Events (UserJoinedGroup, UserLeftGroup, GroupClosed) carry the sequence of their
      ChangeRecord, are staged in the outbox before commit and emitted only after it
    - A call that changes nothing appends nothing

Design Decisions:
    - Explicit statements over ORM relationship cascades: every write is visible next to its record
    - "Release" paths end with commit, not rollback: rollback expires loaded rows and the
      caller still reads them (async sessions cannot lazy-load)
    - assign_random_group retries selection once when the chosen group closes or fills up
      in between (the join re-checks both under the group lock)
    - generate_available_name reads outside the write path; create_group resolves a
      collision through the unique constraint and retries once with the next candidate
"""

import logging
import random
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from groupsync.config import Settings, get_settings
from groupsync.core.domain_types import AffectedObject, ChangeType, CourseRole
from groupsync.core.errors import (
    AlreadyMemberError,
    ErrorContext,
    GroupClosedError,
    GroupFullError,
    GroupNameTakenError,
    InvalidGroupPasswordError,
    NoAvailableGroupError,
    ResourceNotFoundError,
)
from groupsync.core.events import GroupClosed, UserJoinedGroup, UserLeftGroup
from groupsync.core.group_naming import find_available_name
from groupsync.core.group_selection import GroupOccupancy, choose_group
from groupsync.core.group_update import Clear, GroupUpdate, SetTo
from groupsync.core.passwords import hash_password, verify_password
from groupsync.core.repository_protocols import EventPublisher
from groupsync.models.group import Group
from groupsync.models.membership import Membership
from groupsync.models.participant import Participant
from groupsync.services.change_log import ChangeLog
from groupsync.services.transaction import TransactionalService, transaction_script

logger = logging.getLogger(__name__)

# selection + one retry after a lost race
_RANDOM_ASSIGNMENT_ATTEMPTS = 2


@dataclass(frozen=True)
class GroupFilter:
    """Filter for list_groups. None means "no constraint"."""
    name: str | None = None
    is_closed: bool | None = None
    min_size: int | None = None
    max_size: int | None = None
    skip: int = 0
    take: int | None = None


@dataclass(frozen=True)
class GroupWithSize:
    group: Group
    size: int


def _ctx(
    course_id: str | None = None, group_id: object = None, participant_id: object = None,
) -> ErrorContext:
    return ErrorContext(
        course_id=course_id,
        group_id=str(group_id) if group_id is not None else None,
        participant_id=str(participant_id) if participant_id is not None else None,
    )


class MembershipService(TransactionalService):
    """Join, leave, random assignment, rename/close and naming of course groups."""

    def __init__(
        self,
        db: AsyncSession,
        publish: EventPublisher | None = None,
        settings: Settings | None = None,
        rng: random.Random | None = None,
    ):
        super().__init__(db, publish)
        self.settings = settings or get_settings()
        self.changes = ChangeLog(db)
        self._rng = rng

    # ─── Reads ──────────────────────────────────────────────────

    async def get_group(self, group_id: UUID, for_update: bool = False) -> Group:
        if for_update:
            group = await self._lock_group(group_id)
        else:
            group = await self.db.scalar(select(Group).where(Group.id == group_id))
        if group is None:
            raise ResourceNotFoundError("Group", str(group_id), _ctx(group_id=group_id))
        return group

    async def _lock_group(self, group_id: UUID) -> Group | None:
        """Row-lock the group and reload it (a cached instance may be stale)."""
        return (await self.db.execute(
            select(Group)
            .where(Group.id == group_id)
            .with_for_update()
            .execution_options(populate_existing=True),
        )).scalar_one_or_none()

    async def get_participant(self, participant_id: UUID) -> Participant:
        participant = await self.db.get(Participant, participant_id)
        if participant is None:
            raise ResourceNotFoundError(
                "Participant", str(participant_id), _ctx(participant_id=participant_id),
            )
        return participant

    async def member_count(self, group_id: UUID) -> int:
        return await self.db.scalar(
            select(func.count(Membership.id)).where(Membership.group_id == group_id),
        ) or 0

    async def get_members(self, group_id: UUID) -> list[Participant]:
        """Members of the group, in join order."""
        await self.get_group(group_id)
        result = await self.db.execute(
            select(Participant)
            .join(Membership, Membership.participant_id == Participant.id)
            .where(Membership.group_id == group_id)
            .order_by(Membership.joined_at.asc()),
        )
        return list(result.scalars().all())

    async def get_group_of_participant(
        self, course_id: str, participant_id: UUID,
    ) -> Group:
        """Current group of the participant in the course (earliest joined)."""
        result = await self.db.execute(
            select(Group)
            .join(Membership, Membership.group_id == Group.id)
            .where(
                Group.course_id == course_id,
                Membership.participant_id == participant_id,
            )
            .order_by(Membership.joined_at.asc())
            .limit(1),
        )
        group = result.scalar_one_or_none()
        if group is None:
            raise ResourceNotFoundError(
                "Group of participant", str(participant_id),
                _ctx(course_id, participant_id=participant_id),
            )
        return group

    async def list_groups(
        self, course_id: str, group_filter: GroupFilter | None = None,
    ) -> tuple[list[GroupWithSize], int]:
        """Groups of the course matching the filter, with sizes, plus the total match count."""
        f = group_filter or GroupFilter()
        size = func.count(Membership.id).label("size")
        query = (
            select(Group, size)
            .outerjoin(Membership, Membership.group_id == Group.id)
            .where(Group.course_id == course_id)
            .group_by(Group.id)
        )
        if f.name:
            query = query.where(Group.name.ilike(f"%{f.name}%"))
        if f.is_closed is not None:
            query = query.where(Group.is_closed == f.is_closed)
        if f.min_size is not None:
            query = query.having(func.count(Membership.id) >= f.min_size)
        if f.max_size is not None:
            query = query.having(func.count(Membership.id) <= f.max_size)

        total = await self.db.scalar(
            select(func.count()).select_from(query.subquery()),
        ) or 0
        paged = query.order_by(Group.name.asc()).offset(f.skip)
        if f.take is not None:
            paged = paged.limit(f.take)
        rows = (await self.db.execute(paged)).all()
        return [GroupWithSize(group=g, size=s) for g, s in rows], total

    async def generate_available_name(
        self, course_id: str, schema: str, skip: tuple[str, ...] = (),
    ) -> str:
        """schema + N for the smallest N in [1, 9999] not used in the course."""
        result = await self.db.execute(
            select(Group.name).where(
                Group.course_id == course_id,
                Group.name.startswith(schema, autoescape=True),
            ),
        )
        return find_available_name(result.scalars().all(), schema, skip=skip)

    # ─── Membership mutations ───────────────────────────────────

    @transaction_script
    async def join(
        self, group_id: UUID, participant_id: UUID, password: str | None = None,
    ) -> Membership:
        """Add the participant to the group. Students must know the group password."""
        return await self._join(group_id, participant_id, password)

    async def _join(
        self,
        group_id: UUID,
        participant_id: UUID,
        password: str | None = None,
        check_password: bool = True,
        capacity: int | None = None,
    ) -> Membership:
        group = await self.get_group(group_id, for_update=True)
        participant = await self.get_participant(participant_id)
        ctx = _ctx(group.course_id, group.id, participant.id)

        if participant.course_id != group.course_id:
            raise ResourceNotFoundError(
                "Participant", f"{participant_id} in course {group.course_id}", ctx,
            )
        if group.is_closed:
            raise GroupClosedError(ctx)
        if (
            check_password
            and group.password_hash
            and participant.role == CourseRole.STUDENT.value
            and (password is None or not verify_password(password, group.password_hash))
        ):
            raise InvalidGroupPasswordError(ctx)
        if capacity is not None and await self.member_count(group.id) >= capacity:
            raise GroupFullError(capacity, ctx)

        membership = Membership(group_id=group.id, participant_id=participant.id)
        self.db.add(membership)
        try:
            await self.db.flush()
        except IntegrityError:
            raise AlreadyMemberError(ctx)

        sequence = await self.changes.append(
            group.course_id, ChangeType.INSERT, AffectedObject.MEMBERSHIP,
            participant.id, group.id,
        )
        event = await self.stage(UserJoinedGroup(
            course_id=group.course_id, group_id=group.id,
            participant_id=participant.id, user_id=participant.user_id,
            sequence=sequence,
        ))
        await self.db.commit()
        logger.info(
            "Participant joined group",
            extra={"course_id": group.course_id, "group_id": group.id,
                   "participant_id": participant.id},
        )
        self.emit_after_commit(event)
        return membership

    @transaction_script
    async def leave(self, group_id: UUID, participant_id: UUID) -> bool:
        """Remove the edge. False (and no record) when it did not exist."""
        group = await self.get_group(group_id)
        result = await self.db.execute(
            delete(Membership).where(
                Membership.group_id == group_id,
                Membership.participant_id == participant_id,
            ),
        )
        if result.rowcount == 0:
            await self.db.commit()
            return False

        sequence = await self.changes.append(
            group.course_id, ChangeType.REMOVE, AffectedObject.MEMBERSHIP,
            participant_id, group.id,
        )
        participant = await self.db.get(Participant, participant_id)
        event = await self.stage(UserLeftGroup(
            course_id=group.course_id, group_id=group.id,
            participant_id=participant_id,
            user_id=participant.user_id if participant else None,
            sequence=sequence,
        ))
        await self.db.commit()
        logger.info(
            "Participant left group",
            extra={"course_id": group.course_id, "group_id": group.id,
                   "participant_id": participant_id},
        )
        self.emit_after_commit(event)
        return True

    @transaction_script
    async def assign_random_group(
        self,
        course_id: str,
        participant_id: UUID,
        candidate_group_ids: list[UUID] | None = None,
    ) -> Group:
        """Place the participant in a random least-occupied open group below capacity."""
        max_size = self.settings.group_max_size
        lost: list[UUID] = []
        for attempt in range(_RANDOM_ASSIGNMENT_ATTEMPTS):
            occupancy = await self._occupancy(course_id, participant_id, candidate_group_ids)
            target = choose_group(occupancy, max_size, self._rng, exclude=lost)
            if target is None:
                break
            try:
                await self._join(
                    target, participant_id, check_password=False, capacity=max_size,
                )
            except (GroupClosedError, GroupFullError) as e:
                await self.db.rollback()
                logger.info(
                    f"Random assignment lost race for group {target}: {e.code}",
                    extra={"course_id": course_id, "attempt": attempt + 1},
                )
                lost.append(target)
                continue
            return await self.get_group(target)
        raise NoAvailableGroupError(_ctx(course_id, participant_id=participant_id))

    async def _occupancy(
        self,
        course_id: str,
        participant_id: UUID,
        candidate_group_ids: list[UUID] | None,
    ) -> list[GroupOccupancy]:
        query = (
            select(Group.id, Group.is_closed, func.count(Membership.id))
            .outerjoin(Membership, Membership.group_id == Group.id)
            .where(Group.course_id == course_id)
            .group_by(Group.id, Group.is_closed)
        )
        if candidate_group_ids is not None:
            query = query.where(Group.id.in_(candidate_group_ids))
        current = set((await self.db.execute(
            select(Membership.group_id).where(Membership.participant_id == participant_id),
        )).scalars().all())
        rows = (await self.db.execute(query)).all()
        return [
            GroupOccupancy(group_id=gid, size=size, is_closed=closed)
            for gid, closed, size in rows
            if gid not in current
        ]

    # ─── Group lifecycle ────────────────────────────────────────

    @transaction_script
    async def create_group(
        self,
        course_id: str,
        name: str | None = None,
        password: str | None = None,
        is_closed: bool = False,
    ) -> Group:
        """Insert a group; without a name, the course's name schema picks one."""
        generated = name is None
        collided: list[str] = []
        for attempt in range(2):
            group_name = name if not generated else await self.generate_available_name(
                course_id, self.settings.group_name_schema, skip=tuple(collided),
            )
            group = Group(
                course_id=course_id,
                name=group_name,
                password_hash=hash_password(password) if password else None,
                is_closed=is_closed,
            )
            self.db.add(group)
            try:
                await self.db.flush()
            except IntegrityError:
                await self.db.rollback()
                if not generated or attempt == 1:
                    raise GroupNameTakenError(group_name, _ctx(course_id))
                collided.append(group_name)
                continue
            await self.changes.append(
                course_id, ChangeType.INSERT, AffectedObject.GROUP, group.id,
            )
            await self.db.commit()
            logger.info(
                f"Group '{group.name}' created",
                extra={"course_id": course_id, "group_id": group.id},
            )
            return group
        raise GroupNameTakenError(collided[-1], _ctx(course_id))

    @transaction_script
    async def rename_or_close(self, group_id: UUID, update: GroupUpdate) -> Group:
        """Apply only the fields present in the update."""
        group = await self.get_group(group_id, for_update=True)
        was_closed = group.is_closed
        changed = False

        if update.name is not None and update.name != group.name:
            group.name = update.name
            changed = True
        if update.is_closed is not None and update.is_closed != group.is_closed:
            group.is_closed = update.is_closed
            changed = True
        if isinstance(update.password, Clear) and group.password_hash is not None:
            group.password_hash = None
            changed = True
        elif isinstance(update.password, SetTo):
            group.password_hash = hash_password(update.password.value)
            changed = True

        if not changed:
            await self.db.commit()
            return group

        try:
            await self.db.flush()
        except IntegrityError:
            raise GroupNameTakenError(update.name or "", _ctx(group.course_id, group_id))

        sequence = await self.changes.append(
            group.course_id, ChangeType.UPDATE, AffectedObject.GROUP, group.id,
        )
        closed = None
        if group.is_closed and not was_closed:
            closed = await self.stage(GroupClosed(
                course_id=group.course_id, group_id=group.id, sequence=sequence,
            ))
        await self.db.commit()
        if closed is not None:
            logger.info(
                "Group closed",
                extra={"course_id": group.course_id, "group_id": group.id},
            )
            self.emit_after_commit(closed)
        return group

    @transaction_script
    async def close_if_empty(self, group_id: UUID) -> bool:
        """Close the group if it has no members right now. Idempotent.

        The count is read under the group lock, in the closing transaction, so a
        join that committed first keeps the group open.
        """
        group = await self._lock_group(group_id)
        if group is None or group.is_closed:
            await self.db.commit()
            return False
        if await self.member_count(group_id) > 0:
            await self.db.commit()
            return False
        await self.rename_or_close(group_id, GroupUpdate(is_closed=True))
        return True

    @transaction_script
    async def delete_group(self, group_id: UUID) -> bool:
        """Delete the group and its memberships. False when it does not exist."""
        group = await self._lock_group(group_id)
        if group is None:
            await self.db.commit()
            return False

        member_ids = (await self.db.execute(
            select(Membership.participant_id).where(Membership.group_id == group_id),
        )).scalars().all()
        await self.db.execute(delete(Membership).where(Membership.group_id == group_id))
        for participant_id in member_ids:
            await self.changes.append(
                group.course_id, ChangeType.REMOVE, AffectedObject.MEMBERSHIP,
                participant_id, group.id,
            )
        await self.db.execute(delete(Group).where(Group.id == group_id))
        await self.changes.append(
            group.course_id, ChangeType.REMOVE, AffectedObject.GROUP, group.id,
        )
        await self.db.commit()
        logger.info(
            f"Group deleted with {len(member_ids)} member(s)",
            extra={"course_id": group.course_id, "group_id": group_id},
        )
        return True
