"""Parameterised SQL fragments that keep text and bound values together."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

PLACEHOLDER = "%s"


@dataclass(frozen=True)
class SqlFragment:
    sql: str
    params: tuple[Any, ...] = ()

    def __post_init__(self):
        if self.sql.count(PLACEHOLDER) != len(self.params):
            raise ValueError(
                f"Fragment {self.sql!r} has {self.sql.count(PLACEHOLDER)} placeholders "
                f"but {len(self.params)} parameters"
            )

    def __add__(self, other: SqlFragment) -> SqlFragment:
        return SqlFragment(self.sql + other.sql, self.params + other.params)

    @classmethod
    def in_list(cls, column: str, values: Iterable[Any]) -> SqlFragment:
        values = tuple(sorted(values))
        placeholders = ", ".join([PLACEHOLDER] * len(values))
        return cls(f"{column} IN ({placeholders})", values)

    def wrap(self, prefix: str, suffix: str = "") -> SqlFragment:
        return SqlFragment(f"{prefix}{self.sql}{suffix}", self.params)


def join(fragments: Iterable[SqlFragment], separator: str = " ") -> SqlFragment:
    """Fold fragments left to right, keeping each one's parameters in order."""
    result = SqlFragment("")
    first = True
    for fragment in fragments:
        if not first:
            result = result + SqlFragment(separator)
        result = result + fragment
        first = False
    return result
