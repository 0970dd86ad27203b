"""Group Naming: pure name-schema suggestion for automatically named groups.

Invariants:
    - Candidates are schema + N for N in [1, NAME_BOUND], tried in ascending order
    - The smallest unused candidate wins
    - Exhaustion raises NameSpaceExhaustedError carrying the bound

Design Decisions:
    - Pure function over a set of names: the DB scan happens in the shell, outside
      the mutating transaction, so a race is resolved by the unique constraint
    - `skip` lets the shell ask for "the next candidate after the one that just collided"
"""

from collections.abc import Iterable

from groupsync.core.errors import NameSpaceExhaustedError

NAME_BOUND = 9999


def find_available_name(
    existing_names: Iterable[str], schema: str,
    skip: Iterable[str] = (), bound: int = NAME_BOUND,
) -> str:
    """Return the first schema + N not in existing_names or skip."""
    taken = set(existing_names) | set(skip)
    for n in range(1, bound + 1):
        candidate = f"{schema}{n}"
        if candidate not in taken:
            return candidate
    raise NameSpaceExhaustedError(schema, bound)
