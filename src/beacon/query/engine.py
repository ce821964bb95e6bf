"""
Query Engine

Natural-language questions under the same authorization rules as direct
access:

    RECEIVED → INTENT_RESOLVED → AUTHORIZATION_CHECKED → EXECUTED | DENIED → LOGGED

Named participants are access-checked one by one and any refusal denies
the whole query. Aggregates are filtered by the executor instead. Every
query, including denied and failed ones, leaves exactly one history row.
"""

import time
import uuid
from typing import Any

import structlog
from pydantic_core import to_jsonable_python

from beacon.access.control import RoleAccessControl
from beacon.access.models import Action, RequestOrigin, Resource, UserContext
from beacon.audit.models import AccessType, PHIAccessEvent, SecurityEvent, Severity
from beacon.audit.service import AuditLog
from beacon.errors import AuthorizationDenied, ValidationError
from beacon.query.executor import QueryExecutor, sensitive_data_type
from beacon.query.formatting import ResponseFormatter
from beacon.query.intent import IntentResolver
from beacon.query.models import (
    QueryIntent,
    QueryOutcome,
    QueryRecord,
    QueryResult,
    QueryState,
)
from beacon.sensitive.gate import SensitiveCategoryGate
from beacon.store.base import Store, Table, eq
from beacon.timeutil import Clock, utcnow

logger = structlog.get_logger(__name__)

GENERIC_ERROR_RESPONSE = "I'm sorry, I couldn't process your query. Please try rephrasing your question."

QUERY_SUGGESTIONS = [
    "How many participants are currently on MAT?",
    "Who's been in recovery more than 6 months?",
    "Show me everyone due for 3-month follow-up",
    "Show participants with active recovery plans",
    "List participants who need consent renewal",
    "Show crisis interventions this month",
    "What are the average BARC-10 scores?",
    "Show enrollment trends this year",
    "List participants with incomplete intakes",
    "Show participants due for assessment",
]

_DEFAULT_ORIGIN = RequestOrigin()


class QueryEngine:
    """
    Usage:
        engine = QueryEngine(store, access, audit, resolver, executor, formatter)
        result = await engine.process("How many participants are on MAT?", user)
    """

    def __init__(
        self,
        store: Store,
        access: RoleAccessControl,
        audit: AuditLog,
        resolver: IntentResolver,
        executor: QueryExecutor,
        formatter: ResponseFormatter,
        sensitive_gate: SensitiveCategoryGate | None = None,
        clock: Clock = utcnow,
    ):
        self._store = store
        self._access = access
        self._audit = audit
        self._resolver = resolver
        self._executor = executor
        self._formatter = formatter
        self._sensitive_gate = sensitive_gate
        self._clock = clock

    async def process(
        self,
        query: str,
        user: UserContext,
        documented_need: str | None = None,
        origin: RequestOrigin | None = None,
    ) -> QueryResult:
        """
        Answer a question for ``user``.

        Denials and failures are returned as unsuccessful results with a
        generic response, never raised.
        """
        if user is None or not user.user_id:
            raise ValidationError("User context is required")

        query = query or ""
        origin = origin or _DEFAULT_ORIGIN
        started = time.perf_counter()
        query_id = str(uuid.uuid4())
        states = [QueryState.RECEIVED]
        intent = QueryIntent()
        data: dict[str, Any] | None = None

        try:
            if not query.strip():
                raise ValidationError("Query cannot be empty")
            intent = await self._resolver.resolve(query)
            states.append(QueryState.INTENT_RESOLVED)

            await self._authorize(query, intent, user, documented_need, origin)
            states.append(QueryState.AUTHORIZATION_CHECKED)

            data = await self._executor.execute(intent, user)
            response = await self._formatter.format(query, intent.intent_type, data)
            states.append(QueryState.EXECUTED)
            outcome = QueryOutcome.EXECUTED
        except AuthorizationDenied as e:
            states += [QueryState.AUTHORIZATION_CHECKED, QueryState.DENIED]
            outcome = QueryOutcome.DENIED
            response = str(e)
            data = None
        except ValidationError as e:
            outcome = QueryOutcome.ERROR
            response = f"I'm sorry, I couldn't process your query. {e}"
            data = None
        except Exception as e:
            logger.error("Query failed", query_id=query_id, user_id=user.user_id, error=str(e))
            outcome = QueryOutcome.ERROR
            response = GENERIC_ERROR_RESPONSE
            data = None

        if outcome == QueryOutcome.EXECUTED and intent.requires_phi and intent.entities:
            await self._audit.record_after_commit(
                PHIAccessEvent(
                    user_id=user.user_id,
                    participant_id=intent.entities[0],
                    access_type=AccessType.READ,
                    data_type="query_result",
                    purpose=f"Natural language query: {query}",
                    timestamp=self._clock(),
                    ip_address=origin.ip_address,
                    device_id=origin.device_id,
                ),
                operation="query.process",
            )

        processing_time_ms = int((time.perf_counter() - started) * 1000)
        result = QueryResult(
            query_id=query_id,
            original_query=query,
            interpreted_intent=intent,
            response=response,
            data=data,
            outcome=outcome,
            timestamp=self._clock(),
            processing_time_ms=processing_time_ms,
            states=states,
        )
        await self._log_query(result, user)
        result.states.append(QueryState.LOGGED)

        logger.info("Query processed",
            query_id=query_id,
            user_id=user.user_id,
            intent_type=intent.intent_type.value,
            outcome=outcome.value,
            processing_time_ms=processing_time_ms)
        return result

    async def _authorize(
        self,
        query: str,
        intent: QueryIntent,
        user: UserContext,
        documented_need: str | None,
        origin: RequestOrigin,
    ) -> None:
        """Entity-level gate. Raises ``AuthorizationDenied`` after auditing the cause."""
        for entity in intent.entities:
            participant = await self._store.select_one(Table.PARTICIPANTS, [eq("id", entity)])
            if participant is None:
                await self._deny(user, entity, query, "unknown participant", origin)

            resource = Resource(
                type="participant",
                id=entity,
                organization_id=participant.get("organization_id"),
            )
            if not await self._access.check_access(user, resource, Action.READ):
                await self._deny(user, entity, query, "no access to participant", origin)

        data_type = sensitive_data_type(intent)
        if data_type is None or self._sensitive_gate is None:
            return

        for entity in intent.entities:
            if not documented_need:
                await self._deny(user, entity, query, f"no documented need for {data_type}", origin)
            approved = await self._sensitive_gate.check_sud_access(
                user.user_id, entity, data_type, documented_need, origin=origin,
            )
            if not approved:
                # The gate has already written its own security event
                raise AuthorizationDenied()

    async def _deny(
        self,
        user: UserContext,
        participant_id: str,
        query: str,
        cause: str,
        origin: RequestOrigin,
    ) -> None:
        await self._audit.record_security_event(SecurityEvent(
            user_id=user.user_id,
            participant_id=participant_id,
            event_type="unauthorized_query_access",
            severity=Severity.HIGH,
            description=f"Query denied ({cause}): {query}",
            timestamp=self._clock(),
            ip_address=origin.ip_address,
            device_id=origin.device_id,
        ))
        logger.warning("Query denied",
            user_id=user.user_id,
            participant_id=participant_id,
            cause=cause)
        raise AuthorizationDenied()

    async def _log_query(self, result: QueryResult, user: UserContext) -> None:
        intent = result.interpreted_intent
        row = {
            "id": result.query_id,
            "user_id": user.user_id,
            "original_query": result.original_query,
            "interpreted_intent": intent.model_dump(mode="json"),
            "response": result.response,
            "data": to_jsonable_python(result.data) if result.data is not None else None,
            "successful": result.successful,
            "outcome": result.outcome.value,
            "processing_time_ms": result.processing_time_ms,
            "timestamp": result.timestamp,
            "accessed_phi": result.successful and intent.requires_phi,
            "accessed_participant_ids": list(intent.entities) or None,
        }
        try:
            await self._store.insert(Table.QUERIES, row)
        except Exception as e:
            await self._audit.alert("query.history", {
                "query_id": result.query_id,
                "user_id": user.user_id,
                "error": str(e),
            })

    @staticmethod
    def suggestions(partial: str | None = None) -> list[str]:
        """Canned example questions, filtered by a case-insensitive substring."""
        if not partial or not partial.strip():
            return list(QUERY_SUGGESTIONS)
        needle = partial.strip().lower()
        return [s for s in QUERY_SUGGESTIONS if needle in s.lower()]

    async def history(self, user_id: str, limit: int = 10) -> list[QueryRecord]:
        """A user's most recent queries, newest first."""
        if not user_id:
            raise ValidationError("User ID is required")
        rows = await self._store.select(
            Table.QUERIES,
            [eq("user_id", user_id)],
            order_by="timestamp",
            descending=True,
            limit=limit,
        )
        return [
            QueryRecord(
                query_id=str(row["id"]),
                query=row["original_query"],
                timestamp=row["timestamp"],
                successful=row["successful"],
                outcome=row.get("outcome"),
                response=row.get("response"),
                processing_time_ms=row.get("processing_time_ms"),
            )
            for row in rows
        ]
