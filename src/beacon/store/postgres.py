"""
PostgreSQL Store

asyncpg-backed implementation of the store contract. Queries are built from
``Filter`` objects with positional parameters; identifiers are validated
against a strict pattern before they reach SQL text.
"""

import json
import re
import uuid
from typing import Any

import asyncpg
import structlog

from beacon.errors import StoreError
from beacon.store.base import Filter, FilterOp, Store, Table

logger = structlog.get_logger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

_OPERATORS = {
    FilterOp.EQ: "=",
    FilterOp.LT: "<",
    FilterOp.LTE: "<=",
    FilterOp.GT: ">",
    FilterOp.GTE: ">=",
}


def _ident(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise StoreError(f"Invalid identifier: {name!r}")
    return name


def _param(value: Any) -> Any:
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    return value


def _normalize(row) -> dict[str, Any]:
    return {k: str(v) if isinstance(v, uuid.UUID) else v for k, v in dict(row).items()}


def build_where(filters: list[Filter], start: int = 1) -> tuple[str, list[Any]]:
    """
    Render filters as a WHERE clause.

    Returns:
        Tuple of (clause text including ``WHERE`` or empty, parameters)
    """
    clauses: list[str] = []
    params: list[Any] = []
    index = start

    for flt in filters:
        column = _ident(flt.column)
        if flt.op == FilterOp.IS_NULL:
            clauses.append(f"{column} IS NULL")
        elif flt.op == FilterOp.NOT_NULL:
            clauses.append(f"{column} IS NOT NULL")
        elif flt.op == FilterOp.IN:
            values = list(flt.value)
            if not values:
                # Empty IN-list matches nothing
                clauses.append("FALSE")
                continue
            clauses.append(f"{column} = ANY(${index})")
            params.append(values)
            index += 1
        else:
            clauses.append(f"{column} {_OPERATORS[flt.op]} ${index}")
            params.append(_param(flt.value))
            index += 1

    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


# =============================================================================
# SQL Schema for PostgreSQL
# =============================================================================

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    role VARCHAR(50) NOT NULL,
    organization_id TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS participants (
    id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    organization_id TEXT NOT NULL,
    assigned_peer_id TEXT,
    status VARCHAR(50),
    recovery_date DATE,
    mat_status BOOLEAN DEFAULT false,
    follow_up_needed BOOLEAN DEFAULT false,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_participants_org ON participants(organization_id);
CREATE INDEX IF NOT EXISTS idx_participants_peer ON participants(assigned_peer_id);

CREATE TABLE IF NOT EXISTS assessments (
    id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    participant_id TEXT NOT NULL,
    assessment_type VARCHAR(50) NOT NULL,
    total_score NUMERIC,
    completed_at TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_assessments_participant
    ON assessments(participant_id, assessment_type, completed_at);

-- Consent rows are never deleted; revocation and expiry are status changes
CREATE TABLE IF NOT EXISTS consents (
    id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    participant_id TEXT NOT NULL,
    consent_type VARCHAR(50) NOT NULL,
    form_kind VARCHAR(50) NOT NULL,
    participant_name TEXT NOT NULL,
    participant_dob DATE,
    purpose_of_disclosure TEXT,
    authorized_recipients TEXT[] NOT NULL DEFAULT '{}',
    information_to_disclose TEXT[] NOT NULL DEFAULT '{}',
    expiration_date DATE,
    signature_encrypted TEXT NOT NULL,
    date_signed DATE NOT NULL,
    witness_name TEXT,
    witness_signature_encrypted TEXT,
    status VARCHAR(20) NOT NULL DEFAULT 'active',
    revoked_date DATE,
    revoked_reason TEXT,
    created_by TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_consents_participant
    ON consents(participant_id, consent_type, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_consents_expiration ON consents(status, expiration_date);

-- Append-only; session rows receive one update when closed
CREATE TABLE IF NOT EXISTS audit_logs (
    id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    log_type VARCHAR(30) NOT NULL,
    user_id TEXT NOT NULL,
    participant_id TEXT,
    access_type VARCHAR(20),
    data_type VARCHAR(100),
    access_purpose TEXT,
    access_denied BOOLEAN DEFAULT false,
    ip_address VARCHAR(45),
    device_id TEXT,
    table_name VARCHAR(100),
    record_id TEXT,
    field_name VARCHAR(100),
    old_value_encrypted TEXT,
    new_value_encrypted TEXT,
    change_reason TEXT,
    event_type VARCHAR(100),
    severity VARCHAR(20),
    event_description TEXT,
    session_type VARCHAR(50),
    session_start TIMESTAMPTZ,
    session_end TIMESTAMPTZ,
    session_summary TEXT,
    timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_audit_logs_user ON audit_logs(user_id, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_audit_logs_participant ON audit_logs(participant_id, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_audit_logs_type ON audit_logs(log_type, timestamp DESC);

CREATE TABLE IF NOT EXISTS disclosures (
    id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    participant_id TEXT NOT NULL,
    consent_id TEXT NOT NULL REFERENCES consents(id),
    disclosed_to TEXT NOT NULL,
    disclosed_by TEXT NOT NULL,
    purpose TEXT NOT NULL,
    information_disclosed TEXT NOT NULL,
    disclosure_date TIMESTAMPTZ NOT NULL,
    re_disclosure_notice_included BOOLEAN NOT NULL DEFAULT true,
    notice_text TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_disclosures_participant
    ON disclosures(participant_id, disclosure_date DESC);

CREATE TABLE IF NOT EXISTS queries (
    id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    user_id TEXT NOT NULL,
    original_query TEXT NOT NULL,
    interpreted_intent JSONB NOT NULL DEFAULT '{}',
    response TEXT,
    data JSONB,
    successful BOOLEAN NOT NULL,
    outcome VARCHAR(20) NOT NULL,
    processing_time_ms INT DEFAULT 0,
    timestamp TIMESTAMPTZ NOT NULL,
    accessed_phi BOOLEAN NOT NULL DEFAULT false,
    accessed_participant_ids TEXT[],
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_queries_user ON queries(user_id, timestamp DESC);
"""


class PostgresStore(Store):
    """
    Store backed by an asyncpg connection pool.

    Usage:
        pool = await asyncpg.create_pool(settings.postgres.connection_url)
        store = PostgresStore(pool)
    """

    def __init__(self, pool):
        self.pool = pool

    async def _fetch(self, sql: str, params: list[Any]) -> list[dict[str, Any]]:
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(sql, *params)
        except (asyncpg.PostgresError, OSError) as e:
            logger.error("Store query failed", error=str(e))
            raise StoreError(str(e)) from e
        return [_normalize(row) for row in rows]

    async def apply_schema(self) -> None:
        """Create tables and indexes when missing. Safe to run repeatedly."""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)
        except (asyncpg.PostgresError, OSError) as e:
            logger.error("Schema setup failed", error=str(e))
            raise StoreError(str(e)) from e
        logger.info("Database schema ensured")

    async def insert(self, table: Table, row: dict[str, Any]) -> dict[str, Any]:
        columns = [_ident(c) for c in row]
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        sql = (
            f"INSERT INTO {_ident(Table(table).value)} ({', '.join(columns)}) "
            f"VALUES ({placeholders}) RETURNING *"
        )
        rows = await self._fetch(sql, [_param(v) for v in row.values()])
        if not rows:
            raise StoreError(f"Insert into {Table(table).value} returned no row")
        return rows[0]

    async def update(
        self,
        table: Table,
        values: dict[str, Any],
        filters: list[Filter],
    ) -> list[dict[str, Any]]:
        if not values:
            raise StoreError("Update requires at least one column")
        assignments = [f"{_ident(c)} = ${i}" for i, c in enumerate(values, start=1)]
        where, params = build_where(filters, start=len(values) + 1)
        sql = (
            f"UPDATE {_ident(Table(table).value)} SET {', '.join(assignments)} "
            f"{where} RETURNING *"
        )
        return await self._fetch(sql, [_param(v) for v in values.values()] + params)

    async def select(
        self,
        table: Table,
        filters: list[Filter] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        where, params = build_where(filters or [])
        sql = f"SELECT * FROM {_ident(Table(table).value)} {where}".rstrip()
        if order_by:
            sql += f" ORDER BY {_ident(order_by)} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        return await self._fetch(sql, params)

    async def count(self, table: Table, filters: list[Filter] | None = None) -> int:
        where, params = build_where(filters or [])
        sql = f"SELECT COUNT(*) AS total FROM {_ident(Table(table).value)} {where}".rstrip()
        rows = await self._fetch(sql, params)
        return int(rows[0]["total"]) if rows else 0
