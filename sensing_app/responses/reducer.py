"""Fold a sorted, denormalised row stream into paged survey responses.

Rows for one survey response arrive consecutively (the query always orders by
the response UUID as a tie-break), so a group is a maximal run of rows sharing
a key. Paging skips whole groups, materialises up to ``limit`` groups and then
keeps reading to count the rest, so the total is always exact.
"""

from __future__ import annotations

import itertools
from operator import itemgetter
from typing import Any, Callable, Iterable, Iterator, TypeVar

T = TypeVar("T")
Row = dict[str, Any]


def group_consecutive(rows: Iterable[Row], key: Callable[[Row], Any]) -> Iterator[list[Row]]:
    for _, group in itertools.groupby(rows, key=key):
        yield list(group)


def every_row(rows: Iterable[Row]) -> Iterator[list[Row]]:
    """Treat each row as its own group (aggregated results)."""
    for row in rows:
        yield [row]


def reduce_rows(
    groups: Iterator[list[Row]],
    skip: int,
    limit: int | None,
    build: Callable[[list[Row]], T],
) -> tuple[list[T], int]:
    """Return ``(page, total)`` for an iterator of row groups.

    ``limit=None`` processes every remaining group.
    """
    skipped = 0
    for _ in range(skip):
        if next(groups, None) is None:
            return [], skipped
        skipped += 1

    page: list[T] = []
    while limit is None or len(page) < limit:
        group = next(groups, None)
        if group is None:
            return page, skipped + len(page)
        page.append(build(group))

    remaining = sum(1 for _ in groups)
    return page, skipped + len(page) + remaining


by_uuid = itemgetter("uuid")
