"""ORM Models: SQLAlchemy declarative models for all stored entities.

Invariants:
    - All models inherit from Base (db/base.py)
    - Tracked tables (groups, group_memberships, assignment_registrations,
      registration_members) are only written through the services, next to a change record

Design Decisions:
    - One file per entity for locality
    - All models imported here so Base.metadata is complete before create_all / autogenerate
"""

from groupsync.models.participant import Participant  # noqa: F401
from groupsync.models.group import Group  # noqa: F401
from groupsync.models.membership import Membership  # noqa: F401
from groupsync.models.assignment_registration import (  # noqa: F401
    AssignmentRegistration, RegistrationMember,
)
from groupsync.models.change_record import ChangeRecord, CourseSequence  # noqa: F401
from groupsync.models.dead_letter import DeadLetter  # noqa: F401
from groupsync.models.outbox_event import OutboxEvent  # noqa: F401
