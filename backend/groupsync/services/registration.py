"""Registration Manager: bind groups, with a member snapshot, to assignments.

Invariants:
    - At most one AssignmentRegistration per (assignment_id, group_id)
    - Extending a registration inserts only the missing members; duplicates are a no-op
    - register_group appends ChangeRecord(insert) on creation, ChangeRecord(update) when
      members were appended, nothing when nothing changed
    - Removals append one ChangeRecord(remove) per deleted row, in the deleting transaction
    - One RegistrationsRemoved event per course per removal call, staged in the outbox
      before commit and emitted after it, listing every affected participant
    - A registration never outlives its last member: remove_for_participant deletes a
      registration it empties, with its own ChangeRecord(remove)

Design Decisions:
    - A lost race on either unique constraint rolls the whole transaction back and runs
      the script once more; the second pass sees the winner's rows
    - register_groups is atomic per group only: failures are collected, successes kept
    - Snapshot members are validated against the group's course (NotFound otherwise)
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from groupsync.core.domain_types import AffectedObject, ChangeType
from groupsync.core.errors import (
    ErrorContext,
    GroupSyncError,
    RegistrationConflictError,
    ResourceNotFoundError,
)
from groupsync.core.events import RegistrationsRemoved
from groupsync.core.repository_protocols import EventPublisher
from groupsync.models.assignment_registration import AssignmentRegistration, RegistrationMember
from groupsync.models.participant import Participant
from groupsync.services.change_log import ChangeLog
from groupsync.services.membership import GroupFilter, MembershipService
from groupsync.services.transaction import TransactionalService, transaction_script

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationView:
    """Registration with its snapshot members."""
    id: UUID
    assignment_id: str
    course_id: str
    group_id: UUID | None
    created_at: datetime
    member_ids: list[UUID] = field(default_factory=list)


@dataclass(frozen=True)
class RegistrationFailure:
    group_id: UUID
    code: str
    message: str


@dataclass
class BulkRegistrationResult:
    registrations: list[RegistrationView] = field(default_factory=list)
    failures: list[RegistrationFailure] = field(default_factory=list)


class RegistrationService(TransactionalService):
    """Create, extend, remove and read assignment registrations."""

    def __init__(self, db: AsyncSession, publish: EventPublisher | None = None):
        super().__init__(db, publish)
        self.changes = ChangeLog(db)
        self.groups = MembershipService(db)

    # ─── Create / extend ────────────────────────────────────────

    @transaction_script
    async def register_group(
        self, assignment_id: str, group_id: UUID, member_ids: list[UUID],
    ) -> RegistrationView:
        """Create the registration or append the members it does not have yet."""
        for attempt in range(2):
            try:
                return await self._register_group(assignment_id, group_id, member_ids)
            except IntegrityError:
                await self.db.rollback()
                logger.info(
                    "Registration write lost a race, retrying",
                    extra={"assignment_id": assignment_id, "group_id": group_id,
                           "attempt": attempt + 1},
                )
        raise RegistrationConflictError(ErrorContext(
            assignment_id=assignment_id, group_id=str(group_id),
        ))

    async def _register_group(
        self, assignment_id: str, group_id: UUID, member_ids: list[UUID],
    ) -> RegistrationView:
        group = await self.groups.get_group(group_id)
        ids = list(dict.fromkeys(member_ids))
        await self._require_participants(group.course_id, ids, assignment_id)

        registration = (await self.db.execute(
            select(AssignmentRegistration)
            .where(
                AssignmentRegistration.assignment_id == assignment_id,
                AssignmentRegistration.group_id == group_id,
            )
            .with_for_update(),
        )).scalar_one_or_none()
        created = registration is None
        if created:
            registration = AssignmentRegistration(
                assignment_id=assignment_id, course_id=group.course_id, group_id=group_id,
            )
            self.db.add(registration)
            await self.db.flush()

        existing = set((await self.db.execute(
            select(RegistrationMember.participant_id)
            .where(RegistrationMember.registration_id == registration.id),
        )).scalars().all())
        added = [p for p in ids if p not in existing]
        for participant_id in added:
            self.db.add(RegistrationMember(
                registration_id=registration.id, participant_id=participant_id,
            ))
        if added:
            await self.db.flush()

        if created:
            await self.changes.append(
                group.course_id, ChangeType.INSERT, AffectedObject.ASSIGNMENT_REGISTRATION,
                registration.id, group.id,
            )
        elif added:
            await self.changes.append(
                group.course_id, ChangeType.UPDATE, AffectedObject.ASSIGNMENT_REGISTRATION,
                registration.id, group.id,
            )
        await self.db.commit()

        if created or added:
            logger.info(
                f"Group registered with {len(added)} new member(s)",
                extra={"assignment_id": assignment_id, "group_id": group_id,
                       "course_id": group.course_id},
            )
        return RegistrationView(
            id=registration.id,
            assignment_id=registration.assignment_id,
            course_id=registration.course_id,
            group_id=registration.group_id,
            created_at=registration.created_at,
            member_ids=sorted(existing | set(added), key=str),
        )

    async def _require_participants(
        self, course_id: str, ids: list[UUID], assignment_id: str,
    ) -> None:
        if not ids:
            return
        found = set((await self.db.execute(
            select(Participant.id).where(
                Participant.id.in_(ids), Participant.course_id == course_id,
            ),
        )).scalars().all())
        missing = [p for p in ids if p not in found]
        if missing:
            raise ResourceNotFoundError(
                "Participant", str(missing[0]),
                ErrorContext(course_id=course_id, assignment_id=assignment_id,
                             participant_id=str(missing[0])),
            )

    async def register_groups(
        self, assignment_id: str, group_ids: list[UUID],
    ) -> BulkRegistrationResult:
        """Snapshot and register each group in its own transaction."""
        result = BulkRegistrationResult()
        for group_id in group_ids:
            try:
                members = await self.groups.get_members(group_id)
                view = await self.register_group(
                    assignment_id, group_id, [m.id for m in members],
                )
            except GroupSyncError as e:
                logger.warning(
                    f"Group registration failed: {e.message}",
                    extra={"assignment_id": assignment_id, "group_id": group_id,
                           "error_code": e.code},
                )
                result.failures.append(RegistrationFailure(group_id, e.code, e.message))
                continue
            result.registrations.append(view)
        return result

    async def register_course_groups(
        self, assignment_id: str, course_id: str,
    ) -> BulkRegistrationResult:
        """Register every non-empty group of the course."""
        groups, _ = await self.groups.list_groups(course_id, GroupFilter(min_size=1))
        return await self.register_groups(assignment_id, [g.group.id for g in groups])

    # ─── Remove ─────────────────────────────────────────────────

    @transaction_script
    async def remove_for_participant(self, assignment_id: str, participant_id: UUID) -> None:
        """Drop the participant from the assignment's registrations. NotFound if absent.

        A registration left without members is removed as well.
        """
        rows = (await self.db.execute(
            select(AssignmentRegistration)
            .join(RegistrationMember,
                  RegistrationMember.registration_id == AssignmentRegistration.id)
            .where(
                AssignmentRegistration.assignment_id == assignment_id,
                RegistrationMember.participant_id == participant_id,
            )
            .with_for_update(),
        )).scalars().all()
        if not rows:
            raise ResourceNotFoundError(
                "Registration of participant", str(participant_id),
                ErrorContext(assignment_id=assignment_id, participant_id=str(participant_id)),
            )

        ids = [r.id for r in rows]
        await self.db.execute(
            delete(RegistrationMember).where(
                RegistrationMember.registration_id.in_(ids),
                RegistrationMember.participant_id == participant_id,
            ),
        )
        still_used = set((await self.db.execute(
            select(RegistrationMember.registration_id)
            .where(RegistrationMember.registration_id.in_(ids)),
        )).scalars().all())
        emptied = [r for r in rows if r.id not in still_used]
        if emptied:
            await self.db.execute(
                delete(AssignmentRegistration)
                .where(AssignmentRegistration.id.in_([r.id for r in emptied])),
            )

        last_sequence: dict[str, int] = {}
        group_of: dict[str, UUID | None] = {}
        for registration in rows:
            last_sequence[registration.course_id] = await self.changes.append(
                registration.course_id, ChangeType.REMOVE, AffectedObject.REGISTRATION_MEMBER,
                participant_id, registration.id,
            )
            group_of[registration.course_id] = registration.group_id
        for registration in emptied:
            last_sequence[registration.course_id] = await self.changes.append(
                registration.course_id, ChangeType.REMOVE,
                AffectedObject.ASSIGNMENT_REGISTRATION,
                registration.id, registration.group_id,
            )
        events = [
            await self.stage(RegistrationsRemoved(
                course_id=course_id, assignment_id=assignment_id,
                group_id=group_of[course_id], participant_ids=[participant_id],
                sequence=sequence,
            ))
            for course_id, sequence in last_sequence.items()
        ]
        await self.db.commit()

        logger.info(
            f"Participant removed from registration ({len(emptied)} emptied registration(s) removed)",
            extra={"assignment_id": assignment_id, "participant_id": participant_id},
        )
        self.emit_after_commit(*events)

    @transaction_script
    async def remove_for_group(self, assignment_id: str, group_id: UUID) -> int:
        return await self._remove(
            assignment_id,
            AssignmentRegistration.group_id == group_id,
            group_id=group_id,
        )

    @transaction_script
    async def remove_all(self, assignment_id: str) -> int:
        return await self._remove(assignment_id)

    async def _remove(self, assignment_id: str, *conditions, group_id: UUID | None = None) -> int:
        registrations = (await self.db.execute(
            select(AssignmentRegistration)
            .where(AssignmentRegistration.assignment_id == assignment_id, *conditions)
            .with_for_update(),
        )).scalars().all()
        if not registrations:
            await self.db.commit()
            return 0

        ids = [r.id for r in registrations]
        members = (await self.db.execute(
            select(RegistrationMember.registration_id, RegistrationMember.participant_id)
            .where(RegistrationMember.registration_id.in_(ids)),
        )).all()
        await self.db.execute(
            delete(RegistrationMember).where(RegistrationMember.registration_id.in_(ids)),
        )
        await self.db.execute(
            delete(AssignmentRegistration).where(AssignmentRegistration.id.in_(ids)),
        )
        last_sequence: dict[str, int] = {}
        for registration in registrations:
            last_sequence[registration.course_id] = await self.changes.append(
                registration.course_id, ChangeType.REMOVE,
                AffectedObject.ASSIGNMENT_REGISTRATION,
                registration.id, registration.group_id,
            )

        course_of = {r.id: r.course_id for r in registrations}
        affected: dict[str, list[UUID]] = defaultdict(list)
        for registration_id, participant_id in members:
            participants = affected[course_of[registration_id]]
            if participant_id not in participants:
                participants.append(participant_id)
        events = [
            await self.stage(RegistrationsRemoved(
                course_id=course_id, assignment_id=assignment_id,
                group_id=group_id, participant_ids=participant_ids,
                sequence=last_sequence[course_id],
            ))
            for course_id, participant_ids in affected.items()
        ]
        await self.db.commit()

        logger.info(
            f"Removed {len(registrations)} registration(s)",
            extra={"assignment_id": assignment_id, "group_id": group_id},
        )
        self.emit_after_commit(*events)
        return len(registrations)

    # ─── Reads ──────────────────────────────────────────────────

    async def has_any_registration(self, assignment_id: str) -> bool:
        return bool(await self.db.scalar(
            select(exists().where(AssignmentRegistration.assignment_id == assignment_id)),
        ))

    async def get_registrations(self, assignment_id: str) -> list[RegistrationView]:
        registrations = (await self.db.execute(
            select(AssignmentRegistration)
            .where(AssignmentRegistration.assignment_id == assignment_id)
            .order_by(AssignmentRegistration.created_at.asc()),
        )).scalars().all()
        return await self._views(registrations)

    async def get_registration_of_group(
        self, assignment_id: str, group_id: UUID,
    ) -> RegistrationView:
        registration = (await self.db.execute(
            select(AssignmentRegistration).where(
                AssignmentRegistration.assignment_id == assignment_id,
                AssignmentRegistration.group_id == group_id,
            ),
        )).scalar_one_or_none()
        if registration is None:
            raise ResourceNotFoundError(
                "Registration of group", str(group_id),
                ErrorContext(assignment_id=assignment_id, group_id=str(group_id)),
            )
        return (await self._views([registration]))[0]

    async def get_registration_of_participant(
        self, assignment_id: str, participant_id: UUID,
    ) -> RegistrationView:
        registration = (await self.db.execute(
            select(AssignmentRegistration)
            .join(RegistrationMember,
                  RegistrationMember.registration_id == AssignmentRegistration.id)
            .where(
                AssignmentRegistration.assignment_id == assignment_id,
                RegistrationMember.participant_id == participant_id,
            )
            .order_by(AssignmentRegistration.created_at.asc())
            .limit(1),
        )).scalar_one_or_none()
        if registration is None:
            raise ResourceNotFoundError(
                "Registration of participant", str(participant_id),
                ErrorContext(assignment_id=assignment_id, participant_id=str(participant_id)),
            )
        return (await self._views([registration]))[0]

    async def _views(self, registrations) -> list[RegistrationView]:
        if not registrations:
            return []
        members: dict[UUID, list[UUID]] = defaultdict(list)
        rows = (await self.db.execute(
            select(RegistrationMember.registration_id, RegistrationMember.participant_id)
            .where(RegistrationMember.registration_id.in_([r.id for r in registrations])),
        )).all()
        for registration_id, participant_id in rows:
            members[registration_id].append(participant_id)
        return [
            RegistrationView(
                id=r.id,
                assignment_id=r.assignment_id,
                course_id=r.course_id,
                group_id=r.group_id,
                created_at=r.created_at,
                member_ids=sorted(members[r.id], key=str),
            )
            for r in registrations
        ]
