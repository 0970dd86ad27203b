"""Group Update: explicit partial-update value with a tri-state password field.

Invariants:
    - name / is_closed: None means "leave unchanged"
    - password: UNCHANGED | CLEAR | SetTo(value); absence is never confused with clearing
    - from_raw_password maps the wire convention ("" clears, missing or null keeps)

Design Decisions:
    - Tri-state classes over Optional[str]: the old "undefined vs empty string" rule
      becomes a type the checker can see
"""

from dataclasses import dataclass
from typing import Union


class Unchanged:
    """Leave the field as it is."""
    def __repr__(self) -> str:
        return "UNCHANGED"


class Clear:
    """Remove the field's value."""
    def __repr__(self) -> str:
        return "CLEAR"


@dataclass(frozen=True)
class SetTo:
    """Replace the field's value."""
    value: str


UNCHANGED = Unchanged()
CLEAR = Clear()

PasswordUpdate = Union[Unchanged, Clear, SetTo]


def from_raw_password(value: str | None, present: bool = True) -> PasswordUpdate:
    """Translate a request field into a PasswordUpdate."""
    if not present or value is None:
        return UNCHANGED
    if value == "":
        return CLEAR
    return SetTo(value)


@dataclass(frozen=True)
class GroupUpdate:
    """Partial update for rename_or_close. Only present fields are applied."""
    name: str | None = None
    is_closed: bool | None = None
    password: PasswordUpdate = UNCHANGED

    def is_empty(self) -> bool:
        return (
            self.name is None
            and self.is_closed is None
            and isinstance(self.password, Unchanged)
        )
