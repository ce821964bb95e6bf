"""Persistent store contract and backends."""
from beacon.store.base import (
    Filter,
    FilterOp,
    Store,
    Table,
    eq,
    gt,
    gte,
    in_,
    is_null,
    lt,
    lte,
    not_null,
)
from beacon.store.memory import InMemoryStore

__all__ = [
    "Filter",
    "FilterOp",
    "Store",
    "Table",
    "InMemoryStore",
    "eq",
    "gt",
    "gte",
    "in_",
    "is_null",
    "lt",
    "lte",
    "not_null",
]
