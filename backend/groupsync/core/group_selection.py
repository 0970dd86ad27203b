"""Random Group Selection: pure choice of a target group for random assignment.

Invariants:
    - Closed groups and groups at or above max_size never qualify
    - Only the least-occupied qualifying groups are eligible
    - Eligible groups are ordered by id; without an RNG the lowest id wins
    - Returns None when nothing qualifies (shell maps it to NoAvailableGroupError)

Design Decisions:
    - rng injected (random.Random): production picks uniformly, tests pass None
      for a deterministic lowest-id choice
"""

import random
from collections.abc import Iterable
from dataclasses import dataclass

from groupsync.core.domain_types import GroupId


@dataclass(frozen=True)
class GroupOccupancy:
    """Snapshot of a candidate group at selection time."""
    group_id: GroupId
    size: int
    is_closed: bool


def eligible_groups(
    candidates: Iterable[GroupOccupancy], max_size: int,
    exclude: Iterable[GroupId] = (),
) -> list[GroupOccupancy]:
    """Open, non-full, least-occupied groups sorted by id."""
    excluded = set(exclude)
    open_groups = [
        g for g in candidates
        if not g.is_closed and g.size < max_size and g.group_id not in excluded
    ]
    if not open_groups:
        return []
    smallest = min(g.size for g in open_groups)
    return sorted(
        (g for g in open_groups if g.size == smallest),
        key=lambda g: str(g.group_id),
    )


def choose_group(
    candidates: Iterable[GroupOccupancy], max_size: int,
    rng: random.Random | None = None,
    exclude: Iterable[GroupId] = (),
) -> GroupId | None:
    """Pick the group a participant should be placed in, or None."""
    eligible = eligible_groups(candidates, max_size, exclude)
    if not eligible:
        return None
    if rng is None:
        return eligible[0].group_id
    return rng.choice(eligible).group_id
