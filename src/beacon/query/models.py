"""Query Engine Models"""
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class QueryIntentType(str, Enum):
    COUNT = "count"
    LIST = "list"
    DETAIL = "detail"
    COMPARISON = "comparison"
    TREND = "trend"


class QueryState(str, Enum):
    """Per-query state machine. Every path ends in LOGGED."""
    RECEIVED = "received"
    INTENT_RESOLVED = "intent_resolved"
    AUTHORIZATION_CHECKED = "authorization_checked"
    EXECUTED = "executed"
    DENIED = "denied"
    LOGGED = "logged"


class QueryOutcome(str, Enum):
    EXECUTED = "executed"
    DENIED = "denied"
    ERROR = "error"


class QueryIntent(BaseModel):
    """Resolved shape of a natural-language question."""
    intent_type: QueryIntentType = QueryIntentType.COUNT
    entities: list[str] = Field(default_factory=list)
    filters: dict[str, Any] = Field(default_factory=dict)
    # Unknown means yes
    requires_phi: bool = True


class QueryResult(BaseModel):
    query_id: str
    original_query: str
    interpreted_intent: QueryIntent
    response: str
    data: dict[str, Any] | None = None
    outcome: QueryOutcome
    timestamp: datetime
    processing_time_ms: int
    states: list[QueryState] = Field(default_factory=list)

    @property
    def successful(self) -> bool:
        return self.outcome == QueryOutcome.EXECUTED


class QueryRecord(BaseModel):
    """One row of a user's query history."""
    query_id: str
    query: str
    timestamp: datetime
    successful: bool
    outcome: QueryOutcome | None = None
    response: str | None = None
    processing_time_ms: int | None = None
