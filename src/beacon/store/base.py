"""
Persistent Store Contract

Table-like collections keyed by UUID with equality, IN, range and null
filters plus ordering. There is deliberately no delete operation: consent
and audit rows are never physically removed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable


class Table(str, Enum):
    CONSENTS = "consents"
    AUDIT_LOGS = "audit_logs"
    PARTICIPANTS = "participants"
    USERS = "users"
    QUERIES = "queries"
    DISCLOSURES = "disclosures"
    ASSESSMENTS = "assessments"


class FilterOp(str, Enum):
    EQ = "eq"
    IN = "in"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    IS_NULL = "is_null"
    NOT_NULL = "not_null"


@dataclass(frozen=True)
class Filter:
    """A single column predicate. Filters passed together are AND-ed."""
    column: str
    op: FilterOp
    value: Any = None


def eq(column: str, value: Any) -> Filter:
    return Filter(column, FilterOp.EQ, value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, FilterOp.IN, tuple(values))


def lt(column: str, value: Any) -> Filter:
    return Filter(column, FilterOp.LT, value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, FilterOp.LTE, value)


def gt(column: str, value: Any) -> Filter:
    return Filter(column, FilterOp.GT, value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, FilterOp.GTE, value)


def is_null(column: str) -> Filter:
    return Filter(column, FilterOp.IS_NULL)


def not_null(column: str) -> Filter:
    return Filter(column, FilterOp.NOT_NULL)


class Store(ABC):
    """
    Abstract persistent store.

    Every write is a single-table operation; no cross-table transactions
    are assumed. Backends wrap driver failures in ``StoreError``.
    """

    @abstractmethod
    async def insert(self, table: Table, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return it as persisted (with ``id``)."""
        pass

    @abstractmethod
    async def update(
        self,
        table: Table,
        values: dict[str, Any],
        filters: list[Filter],
    ) -> list[dict[str, Any]]:
        """Update every row matching ``filters``; return the updated rows."""
        pass

    @abstractmethod
    async def select(
        self,
        table: Table,
        filters: list[Filter] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Select rows matching ``filters``."""
        pass

    async def select_one(
        self,
        table: Table,
        filters: list[Filter],
    ) -> dict[str, Any] | None:
        """Select a single row or ``None``."""
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    @abstractmethod
    async def count(self, table: Table, filters: list[Filter] | None = None) -> int:
        """Count rows matching ``filters``."""
        pass
