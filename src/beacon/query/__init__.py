"""Natural-language Query Engine."""
from beacon.query.engine import QUERY_SUGGESTIONS, QueryEngine
from beacon.query.executor import QueryExecutor, sensitive_data_type
from beacon.query.formatting import ResponseFormatter, fallback_response
from beacon.query.intent import IntentResolver, keyword_intent, merge_intents, parse_ai_intent
from beacon.query.models import (
    QueryIntent,
    QueryIntentType,
    QueryOutcome,
    QueryRecord,
    QueryResult,
    QueryState,
)

__all__ = [
    "QueryEngine",
    "QueryExecutor",
    "IntentResolver",
    "ResponseFormatter",
    "QueryIntent",
    "QueryIntentType",
    "QueryOutcome",
    "QueryRecord",
    "QueryResult",
    "QueryState",
    "QUERY_SUGGESTIONS",
    "fallback_response",
    "keyword_intent",
    "merge_intents",
    "parse_ai_intent",
    "sensitive_data_type",
]
