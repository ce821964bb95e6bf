"""
Query Executor

Runs an authorized ``QueryIntent`` against the store. Row filtering is
structural: the caller's organization and, for peer specialists, their
caseload are part of every aggregate predicate, so counts never reveal
participants outside what the caller may see.
"""

import re
from collections import Counter
from datetime import datetime, time, timezone
from typing import Any

import structlog

from beacon.access.models import UserContext, UserRole
from beacon.config import ComplianceSettings
from beacon.errors import ValidationError
from beacon.query.models import QueryIntent, QueryIntentType
from beacon.store.base import Filter, Store, Table, eq, gte, in_, lte
from beacon.timeutil import Clock, months_ago, today, utcnow

logger = structlog.get_logger(__name__)

LIST_COLUMNS = ("id", "status", "recovery_date", "mat_status", "follow_up_needed")

DEFAULT_ASSESSMENT_TYPE = "BARC_10"

_MONTHS_VALUE = re.compile(r"(\d+)")


def parse_bool(value: Any) -> bool | None:
    """A real bool or the strings "true"/"false"; anything else is ``None``."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def parse_months(value: Any) -> int | None:
    """Whole months from ``6``, ``"6"``, ``">6"`` or ``"more than 6 months"``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float) and value.is_integer() and value >= 0:
        return int(value)
    if isinstance(value, str):
        match = _MONTHS_VALUE.search(value)
        if match:
            return int(match.group(1))
    return None


def sensitive_data_type(intent: QueryIntent) -> str | None:
    """
    The SUD data type a participant-level query reads, if any.

    Detail results include recent assessments and treatment history;
    comparisons read one assessment series.
    """
    if not intent.entities:
        return None
    if intent.intent_type == QueryIntentType.COMPARISON:
        assessment_type = str(intent.filters.get("assessment_type") or DEFAULT_ASSESSMENT_TYPE)
        return f"assessment_{assessment_type.lower()}"
    elif intent.intent_type == QueryIntentType.DETAIL:
        return "treatment_history"
    return None


class QueryExecutor:
    """Executes count, list, detail, comparison and trend intents."""

    def __init__(
        self,
        store: Store,
        settings: ComplianceSettings | None = None,
        clock: Clock = utcnow,
    ):
        self._store = store
        self._settings = settings or ComplianceSettings()
        self._clock = clock

    def scope(self, user: UserContext) -> list[Filter]:
        """Row predicate for aggregate queries."""
        filters = [eq("organization_id", user.organization_id)]
        if user.role == UserRole.PEER_SPECIALIST:
            # No caseload means no rows, never the whole organization
            filters.append(in_("id", user.assigned_participants or ()))
        return filters

    def participant_filters(self, intent: QueryIntent) -> list[Filter]:
        """
        Whitelisted intent filters; unknown keys are ignored.

        A known filter whose value cannot be parsed raises
        ``ValidationError``. Dropping it would widen the result set.
        """
        filters = []
        for key, value in intent.filters.items():
            if value is None:
                continue
            if key in ("mat_status", "follow_up_needed"):
                flag = parse_bool(value)
                if flag is None:
                    raise ValidationError(f"Unsupported value for {key}: {value!r}")
                filters.append(eq(key, flag))
            elif key == "status":
                filters.append(eq("status", str(value)))
            elif key == "recovery_months":
                months = parse_months(value)
                if months is None:
                    raise ValidationError(f"Unsupported value for {key}: {value!r}")
                filters.append(lte("recovery_date", months_ago(today(self._clock), months)))
            elif key == "assessment_type":
                # Consumed by the comparison query
                continue
            else:
                logger.debug("Ignoring unsupported filter", key=key)
        return filters

    async def execute(self, intent: QueryIntent, user: UserContext) -> dict[str, Any]:
        if intent.intent_type == QueryIntentType.COUNT:
            return await self._count(intent, user)
        elif intent.intent_type == QueryIntentType.LIST:
            return await self._list(intent, user)
        elif intent.intent_type == QueryIntentType.DETAIL:
            return await self._detail(intent)
        elif intent.intent_type == QueryIntentType.COMPARISON:
            return await self._comparison(intent)
        elif intent.intent_type == QueryIntentType.TREND:
            return await self._trend(intent, user)
        raise ValueError(f"Unhandled intent type: {intent.intent_type}")

    def _aggregate_filters(self, intent: QueryIntent, user: UserContext) -> list[Filter]:
        filters = self.scope(user) + self.participant_filters(intent)
        if intent.entities:
            filters.append(in_("id", intent.entities))
        return filters

    async def _count(self, intent: QueryIntent, user: UserContext) -> dict[str, Any]:
        count = await self._store.count(Table.PARTICIPANTS, self._aggregate_filters(intent, user))
        return {"count": count, "filters": dict(intent.filters)}

    async def _list(self, intent: QueryIntent, user: UserContext) -> dict[str, Any]:
        rows = await self._store.select(
            Table.PARTICIPANTS,
            self._aggregate_filters(intent, user),
            order_by="created_at",
            limit=self._settings.query_list_limit,
        )
        participants = [{col: row.get(col) for col in LIST_COLUMNS} for row in rows]
        return {"participants": participants, "count": len(participants)}

    def _single_participant(self, intent: QueryIntent) -> str:
        if not intent.entities:
            raise ValidationError(
                f"No participant specified for {intent.intent_type.value} query"
            )
        return intent.entities[0]

    async def _detail(self, intent: QueryIntent) -> dict[str, Any]:
        participant_id = self._single_participant(intent)
        participant = await self._store.select_one(Table.PARTICIPANTS, [eq("id", participant_id)])
        assessments = await self._store.select(
            Table.ASSESSMENTS,
            [eq("participant_id", participant_id)],
            order_by="completed_at",
            descending=True,
            limit=self._settings.detail_assessment_limit,
        )
        return {"participant": participant, "assessments": assessments}

    async def _comparison(self, intent: QueryIntent) -> dict[str, Any]:
        participant_id = self._single_participant(intent)
        assessment_type = str(intent.filters.get("assessment_type") or DEFAULT_ASSESSMENT_TYPE)
        assessments = await self._store.select(
            Table.ASSESSMENTS,
            [eq("participant_id", participant_id), eq("assessment_type", assessment_type)],
            order_by="completed_at",
        )

        if len(assessments) < 2:
            return {
                "message": "Not enough assessments for comparison",
                "assessments": assessments,
            }

        baseline, current = assessments[0], assessments[-1]
        baseline_score = baseline.get("total_score") or 0
        current_score = current.get("total_score") or 0
        change = current_score - baseline_score
        percent_change = round(change / baseline_score * 100) if baseline_score > 0 else 0

        threshold = self._settings.comparison_change_threshold
        if change > threshold:
            trend = "improving"
        elif change < -threshold:
            trend = "declining"
        else:
            trend = "stable"

        return {
            "baseline": {"date": baseline.get("completed_at"), "score": baseline_score},
            "current": {"date": current.get("completed_at"), "score": current_score},
            "change": change,
            "percent_change": percent_change,
            "trend": trend,
            "assessments": assessments,
        }

    async def _trend(self, intent: QueryIntent, user: UserContext) -> dict[str, Any]:
        since = datetime.combine(
            months_ago(today(self._clock), self._settings.trend_window_months),
            time.min,
            tzinfo=timezone.utc,
        )
        filters = self._aggregate_filters(intent, user) + [gte("created_at", since)]
        rows = await self._store.select(Table.PARTICIPANTS, filters, order_by="created_at")

        per_month = Counter(row["created_at"].strftime("%Y-%m") for row in rows)
        months = sorted(per_month)
        return {
            "months": months,
            "values": [per_month[m] for m in months],
            "total": len(rows),
        }
