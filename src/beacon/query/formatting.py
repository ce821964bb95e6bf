"""Query response formatting: AI first, rule-based fallback."""
import asyncio
import json
from typing import Any

import structlog
from pydantic_core import to_jsonable_python

from beacon.llm.client import LLMClient
from beacon.query.models import QueryIntentType

logger = structlog.get_logger(__name__)


def format_prompt(intent_type: QueryIntentType) -> str:
    return f"""You are formatting query results into natural language responses for peer specialists.

Intent Type: {intent_type.value}

Guidelines:
- Be clear and concise
- Use professional but friendly language
- Include relevant numbers and statistics
- Highlight important findings

Return only the formatted response text, no additional commentary."""


def fallback_response(intent_type: QueryIntentType, data: dict[str, Any]) -> str:
    """Deterministic wording for each intent type."""
    if intent_type == QueryIntentType.COUNT:
        return f"There are {data['count']} participants matching your criteria."
    elif intent_type == QueryIntentType.LIST:
        if data["count"] == 0:
            return "No participants found matching your criteria."
        return f"Found {data['count']} participants. Here are the results."
    elif intent_type == QueryIntentType.DETAIL:
        if data.get("participant") is None:
            return "No participant record was found."
        return "Here is the detailed information for the participant."
    elif intent_type == QueryIntentType.COMPARISON:
        if "message" in data:
            return data["message"]
        sign = "+" if data["change"] > 0 else ""
        return (
            f"Baseline score: {data['baseline']['score']}, "
            f"Current score: {data['current']['score']}. "
            f"Change: {sign}{data['change']} ({data['percent_change']}%). "
            f"Trend: {data['trend']}."
        )
    elif intent_type == QueryIntentType.TREND:
        return (
            f"Showing trends over {len(data['months'])} months "
            f"with a total of {data['total']} participants."
        )
    raise ValueError(f"Unhandled intent type: {intent_type}")


class ResponseFormatter:
    """Turns executor output into a sentence for the caller."""

    def __init__(self, llm: LLMClient | None, timeout: float = 5.0):
        self._llm = llm
        self._timeout = timeout

    async def format(self, query: str, intent_type: QueryIntentType, data: dict[str, Any]) -> str:
        if self._llm is None:
            return fallback_response(intent_type, data)

        payload = json.dumps(to_jsonable_python(data), indent=2)
        try:
            answer = await asyncio.wait_for(
                self._llm.interpret(
                    format_prompt(intent_type),
                    f"Original Query: {query}\n\nData: {payload}",
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Response formatting timed out, using fallback", timeout=self._timeout)
            return fallback_response(intent_type, data)
        except Exception as e:
            logger.warning("Response formatting failed, using fallback", error=str(e))
            return fallback_response(intent_type, data)

        answer = (answer or "").strip()
        return answer or fallback_response(intent_type, data)
