"""
Query Intent Resolution

Two independent interpreters:
- the AI collaborator, asked for a JSON intent under a timeout
- a deterministic keyword interpreter that always produces an answer

When both answer, the results are merged by the stricter outcome so the
AI can never relax what the keyword rules require.
"""

import asyncio
import re
from typing import Any

import structlog

from beacon.llm.client import LLMClient, extract_json
from beacon.query.models import QueryIntent, QueryIntentType

logger = structlog.get_logger(__name__)

INTENT_PROMPT = """You are a query interpretation system for a peer recovery program database.
Your job is to analyze natural language queries and extract structured intent.

Query Intent Types:
1. count - Count records matching criteria (e.g., "How many participants are on MAT?")
2. list - List records matching criteria (e.g., "Show me participants in recovery > 6 months")
3. detail - Detailed information about a specific participant
4. comparison - Compare assessment scores over time (e.g., "Compare BARC-10 scores")
5. trend - Show trends over time (e.g., "Show enrollment trends this year")

Return ONLY a JSON object with this structure:
{
  "intentType": "count|list|detail|comparison|trend",
  "entities": ["participant identifiers mentioned"],
  "filters": {"field": "value"},
  "requiresPHI": true|false
}

Supported filters: mat_status (bool), recovery_months (int), follow_up_needed (bool),
status (string), assessment_type ("BARC_10" or "SUPRT_C").

Be accurate and conservative. If unsure, set requiresPHI to true."""

_UUID = re.compile(
    r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b",
    re.IGNORECASE,
)
_MONTHS = re.compile(r"(\d+)\s*months?")


def _has(text: str, *phrases: str) -> bool:
    return any(re.search(rf"\b{re.escape(p)}\b", text) for p in phrases)


def _normalize_entity(value: Any) -> str:
    entity = str(value).strip()
    return entity.lower() if _UUID.fullmatch(entity) else entity


def keyword_intent(query: str) -> QueryIntent:
    """Rule-based interpretation. Pure; never fails."""
    text = query.lower()

    if _has(text, "how many", "count"):
        intent_type = QueryIntentType.COUNT
    elif _has(text, "show me", "list", "who"):
        intent_type = QueryIntentType.LIST
    elif _has(text, "pull up", "get", "find"):
        intent_type = QueryIntentType.DETAIL
    elif _has(text, "compare", "progress", "change"):
        intent_type = QueryIntentType.COMPARISON
    elif _has(text, "trend", "trends", "over time", "history"):
        intent_type = QueryIntentType.TREND
    else:
        intent_type = QueryIntentType.COUNT

    filters: dict[str, Any] = {}
    if _has(text, "mat", "medication-assisted"):
        filters["mat_status"] = True
    if "recovery" in text:
        months = _MONTHS.search(text)
        if months:
            filters["recovery_months"] = int(months.group(1))
    if "follow-up" in text or "followup" in text:
        filters["follow_up_needed"] = True
    if "barc-10" in text or "barc10" in text:
        filters["assessment_type"] = "BARC_10"
    if "suprt-c" in text or "suprtc" in text:
        filters["assessment_type"] = "SUPRT_C"

    entities = list(dict.fromkeys(m.lower() for m in _UUID.findall(query)))

    requires_phi = (
        intent_type in (QueryIntentType.DETAIL, QueryIntentType.COMPARISON, QueryIntentType.LIST)
        or bool(entities)
        or any(word in text for word in ("name", "record", "assessment", "score"))
    )

    return QueryIntent(
        intent_type=intent_type,
        entities=entities,
        filters=filters,
        requires_phi=requires_phi,
    )


def parse_ai_intent(text: str) -> QueryIntent | None:
    """
    Parse the AI answer. Returns None when it is not usable.

    An unknown intent type makes the whole answer unusable; a missing or
    non-boolean ``requiresPHI`` is read as True.
    """
    parsed = extract_json(text)
    if parsed is None:
        return None

    try:
        intent_type = QueryIntentType(str(parsed.get("intentType", "")).lower())
    except ValueError:
        return None

    entities = parsed.get("entities") or []
    if not isinstance(entities, list):
        entities = [entities]
    filters = parsed.get("filters") or {}
    if not isinstance(filters, dict):
        filters = {}
    requires_phi = parsed.get("requiresPHI")

    return QueryIntent(
        intent_type=intent_type,
        entities=[_normalize_entity(e) for e in entities if str(e).strip()],
        filters=filters,
        requires_phi=requires_phi if isinstance(requires_phi, bool) else True,
    )


def merge_intents(ai: QueryIntent, keyword: QueryIntent) -> QueryIntent:
    """
    Stricter of the two.

    PHI is required if either says so; entities are unioned (each one is
    access-checked); filters are combined, narrowing the result set.
    """
    entities = list(ai.entities)
    for entity in keyword.entities:
        if entity not in entities:
            entities.append(entity)

    return QueryIntent(
        intent_type=ai.intent_type,
        entities=entities,
        filters={**keyword.filters, **ai.filters},
        requires_phi=ai.requires_phi or keyword.requires_phi,
    )


class IntentResolver:
    """
    Resolves free text to a ``QueryIntent``.

    Usage:
        resolver = IntentResolver(llm, timeout=5.0)
        intent = await resolver.resolve("How many participants are on MAT?")
    """

    def __init__(self, llm: LLMClient | None, timeout: float = 5.0):
        self._llm = llm
        self._timeout = timeout

    async def resolve(self, query: str) -> QueryIntent:
        fallback = keyword_intent(query)
        if self._llm is None:
            return fallback

        try:
            answer = await asyncio.wait_for(
                self._llm.interpret(INTENT_PROMPT, query),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Intent resolution timed out, using keyword fallback",
                timeout=self._timeout)
            return fallback
        except Exception as e:
            logger.warning("Intent resolution failed, using keyword fallback", error=str(e))
            return fallback

        ai_intent = parse_ai_intent(answer)
        if ai_intent is None:
            logger.info("AI intent not parsable, using keyword fallback")
            return fallback

        return merge_intents(ai_intent, fallback)
