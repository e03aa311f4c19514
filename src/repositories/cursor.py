"""
Keyset (cursor) pagination over a monotonic primary key.

Batches are fetched with a strict inequality on the key
(``WHERE id < :after ORDER BY id DESC LIMIT :n``, or the ascending
equivalent) instead of ``OFFSET``. Rows inserted or deleted elsewhere in the
table between calls therefore never shift the window: every row whose key is
still ahead of the cursor is visited exactly once.

Known limitation: a row that is deleted and re-inserted with a new key that
falls in the range already passed is not visited again.
"""
from __future__ import annotations

from collections.abc import Iterator
from typing import Any, Generic, TypeVar

from sqlalchemy import Select
from sqlalchemy.orm import InstrumentedAttribute, Session


T = TypeVar("T")

# Largest signed 64-bit value; first cursor of a descending scan
MAX_CURSOR = 2**63 - 1
# First cursor of an ascending scan (autoincrement keys start at 1)
MIN_CURSOR = 0


class KeysetCursor(Generic[T]):
    """
    Pulls bounded batches from a filtered statement.

    Args:
        session: Session used to run the queries
        stmt: ``select(...)`` carrying the dataset filter, without ordering or limit
        key_column: Monotonic primary-key column
        descending: Walk from the highest key down (default) or lowest key up
        scalars: True when ``stmt`` selects a single ORM entity
    """

    def __init__(
        self,
        session: Session,
        stmt: Select,
        key_column: InstrumentedAttribute,
        *,
        descending: bool = True,
        scalars: bool = True,
    ) -> None:
        self.session = session
        self.stmt = stmt
        self.key_column = key_column
        self.descending = descending
        self.scalars = scalars

    @property
    def start_key(self) -> int:
        return MAX_CURSOR if self.descending else MIN_CURSOR

    def key_of(self, row: Any) -> int:
        return int(getattr(row, self.key_column.key))

    def next_batch(self, after_key: int | None, limit: int) -> tuple[list[T], int | None]:
        """
        Fetch up to ``limit`` rows strictly past ``after_key``.

        Returns:
            ``(rows, last_key)``; an empty list (and ``None``) means the scan
            is exhausted
        """
        if limit <= 0:
            raise ValueError("limit must be positive")
        if after_key is None:
            after_key = self.start_key

        if self.descending:
            stmt = self.stmt.where(self.key_column < after_key).order_by(self.key_column.desc())
        else:
            stmt = self.stmt.where(self.key_column > after_key).order_by(self.key_column.asc())
        result = self.session.execute(stmt.limit(limit))
        rows = list(result.scalars().all() if self.scalars else result.all())

        if not rows:
            return [], None
        return rows, self.key_of(rows[-1])

    def iterate(self, limit: int, after_key: int | None = None) -> Iterator[list[T]]:
        """Yield consecutive batches until the scan is exhausted."""
        cursor = after_key
        while True:
            rows, last_key = self.next_batch(cursor, limit)
            if not rows:
                return
            yield rows
            cursor = last_key
