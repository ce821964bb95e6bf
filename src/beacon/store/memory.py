"""In-memory store for local development and tests."""
import copy
import itertools
import uuid
from typing import Any

import structlog

from beacon.store.base import Filter, FilterOp, Store, Table
from beacon.timeutil import Clock, utcnow

logger = structlog.get_logger(__name__)


def _matches(row: dict[str, Any], flt: Filter) -> bool:
    value = row.get(flt.column)
    op = flt.op

    if op == FilterOp.EQ:
        return value == flt.value
    elif op == FilterOp.IN:
        return value in flt.value
    elif op == FilterOp.IS_NULL:
        return value is None
    elif op == FilterOp.NOT_NULL:
        return value is not None

    # Range comparisons never match NULL, as in SQL
    if value is None or flt.value is None:
        return False
    if op == FilterOp.LT:
        return value < flt.value
    elif op == FilterOp.LTE:
        return value <= flt.value
    elif op == FilterOp.GT:
        return value > flt.value
    elif op == FilterOp.GTE:
        return value >= flt.value
    raise ValueError(f"Unsupported filter operator: {op}")


class InMemoryStore(Store):
    """
    Dict-of-lists store with copy-on-read semantics.

    Rows get a UUID ``id`` and ``created_at`` when absent. Ordering ties are
    broken by insertion order so "most recent" is deterministic.
    """

    def __init__(self, clock: Clock = utcnow):
        self._tables: dict[str, list[tuple[int, dict[str, Any]]]] = {}
        self._seq = itertools.count()
        self._clock = clock

    def _rows(self, table: Table) -> list[tuple[int, dict[str, Any]]]:
        return self._tables.setdefault(Table(table).value, [])

    async def insert(self, table: Table, row: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        stored.setdefault("created_at", self._clock())
        self._rows(table).append((next(self._seq), stored))
        return copy.deepcopy(stored)

    async def update(
        self,
        table: Table,
        values: dict[str, Any],
        filters: list[Filter],
    ) -> list[dict[str, Any]]:
        updated = []
        for _, row in self._rows(table):
            if all(_matches(row, f) for f in filters):
                row.update(copy.deepcopy(values))
                updated.append(copy.deepcopy(row))
        return updated

    async def select(
        self,
        table: Table,
        filters: list[Filter] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        filters = filters or []
        matched = [
            (seq, row) for seq, row in self._rows(table)
            if all(_matches(row, f) for f in filters)
        ]

        if order_by:
            def sort_key(item):
                seq, row = item
                value = row.get(order_by)
                # NULLs sort last ascending, first descending (PostgreSQL default)
                return (value is None, value if value is not None else 0, seq)
            matched.sort(key=sort_key, reverse=descending)

        if limit is not None:
            matched = matched[:limit]
        return [copy.deepcopy(row) for _, row in matched]

    async def count(self, table: Table, filters: list[Filter] | None = None) -> int:
        filters = filters or []
        return sum(1 for _, row in self._rows(table) if all(_matches(row, f) for f in filters))
