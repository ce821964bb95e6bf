"""
Tests for the Query Engine

The mock LLM answers with an empty string unless scripted, so most tests
run on the keyword interpreter and the rule-based response wording.
"""

import asyncio
import json

import pytest

from beacon.access.models import RequestOrigin, UserRole
from beacon.audit.models import AuditQuery, LogType
from beacon.config import ComplianceSettings
from beacon.errors import AuthorizationDenied, StoreError, ValidationError
from beacon.llm.client import LLMClient, MockLLMClient
from beacon.query.engine import QUERY_SUGGESTIONS
from beacon.query.executor import QueryExecutor, sensitive_data_type
from beacon.query.formatting import ResponseFormatter, fallback_response
from beacon.query.intent import IntentResolver, keyword_intent, merge_intents, parse_ai_intent
from beacon.query.models import QueryIntent, QueryIntentType, QueryOutcome, QueryState
from beacon.store.base import Table, eq
from beacon.store.memory import InMemoryStore
from tests.conftest import (
    ADMIN,
    FIXED_NOW,
    P1,
    P2,
    PEER,
    UNKNOWN_PARTICIPANT,
    make_consent,
    user_context,
)

NEED = "Reviewing recovery progress before the weekly check-in"


class SlowLLM:
    """LLM stand-in that never answers within the caller's timeout."""

    provider = "slow"

    async def interpret(self, prompt, text):
        await asyncio.sleep(1)
        return '{"intentType": "list"}'


class BrokenLLM:
    provider = "broken"

    async def interpret(self, prompt, text):
        raise RuntimeError("model unavailable")


async def history_rows(services):
    return await services.store.select(Table.QUERIES)


class TestKeywordIntent:

    def test_count_with_mat_filter(self):
        intent = keyword_intent("How many participants are on MAT?")

        assert intent.intent_type == QueryIntentType.COUNT
        assert intent.filters == {"mat_status": True}
        assert intent.entities == []
        assert not intent.requires_phi

    def test_list_with_recovery_months(self):
        intent = keyword_intent("Show me participants in recovery more than 6 months")

        assert intent.intent_type == QueryIntentType.LIST
        assert intent.filters["recovery_months"] == 6
        assert intent.requires_phi

    def test_detail_extracts_participant_id(self):
        intent = keyword_intent(f"Pull up {P1.upper()}")

        assert intent.intent_type == QueryIntentType.DETAIL
        assert intent.entities == [P1]
        assert intent.requires_phi

    def test_comparison_with_assessment_type(self):
        intent = keyword_intent(f"Compare SUPRT-C progress for {P1}")

        assert intent.intent_type == QueryIntentType.COMPARISON
        assert intent.filters["assessment_type"] == "SUPRT_C"

    def test_trend(self):
        intent = keyword_intent("Show enrollment trends this year")

        assert intent.intent_type == QueryIntentType.TREND

    def test_unrecognised_defaults_to_count(self):
        assert keyword_intent("anything at all").intent_type == QueryIntentType.COUNT

    def test_sensitive_words_require_phi(self):
        assert keyword_intent("How many assessment scores are there?").requires_phi


class TestAIIntent:

    def test_parse_ai_answer_with_prose(self):
        intent = parse_ai_intent(
            'Here you go: {"intentType": "LIST", "entities": [], "filters": {"status": "active"}, '
            '"requiresPHI": false}'
        )

        assert intent.intent_type == QueryIntentType.LIST
        assert intent.filters == {"status": "active"}
        assert intent.requires_phi is False

    def test_missing_requires_phi_defaults_to_true(self):
        intent = parse_ai_intent('{"intentType": "count"}')

        assert intent.requires_phi is True

    @pytest.mark.parametrize("answer", ["", "not json", '{"intentType": "delete_everything"}', "[1, 2]"])
    def test_unusable_answers(self, answer):
        assert parse_ai_intent(answer) is None

    def test_merge_is_stricter(self):
        ai = QueryIntent(
            intent_type=QueryIntentType.LIST,
            entities=[P2],
            filters={"mat_status": False},
            requires_phi=False,
        )
        keyword = QueryIntent(
            intent_type=QueryIntentType.DETAIL,
            entities=[P1],
            filters={"mat_status": True, "follow_up_needed": True},
            requires_phi=True,
        )

        merged = merge_intents(ai, keyword)

        assert merged.intent_type == QueryIntentType.LIST
        assert merged.entities == [P2, P1]
        assert merged.filters == {"mat_status": False, "follow_up_needed": True}
        assert merged.requires_phi is True

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_keywords(self):
        resolver = IntentResolver(SlowLLM(), timeout=0.01)

        intent = await resolver.resolve("How many participants are on MAT?")

        assert intent == keyword_intent("How many participants are on MAT?")

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_keywords(self):
        resolver = IntentResolver(BrokenLLM(), timeout=1)

        intent = await resolver.resolve("Show me participants")

        assert intent.intent_type == QueryIntentType.LIST

    @pytest.mark.asyncio
    async def test_ai_answer_is_used(self):
        llm = LLMClient(backend=MockLLMClient({
            "query interpretation system": json.dumps({
                "intentType": "trend",
                "entities": [],
                "filters": {},
                "requiresPHI": False,
            }),
        }))
        resolver = IntentResolver(llm, timeout=1)

        intent = await resolver.resolve("How are enrollments going?")

        assert intent.intent_type == QueryIntentType.TREND
        assert intent.requires_phi is False


class TestQueryEngineAggregates:

    @pytest.mark.asyncio
    async def test_count_scoped_to_organization(self, seeded, admin):
        result = await seeded.queries.process("How many participants are on MAT?", admin)

        assert result.outcome == QueryOutcome.EXECUTED
        assert result.successful
        assert result.data["count"] == 1
        assert result.response == "There are 1 participants matching your criteria."
        assert result.states == [
            QueryState.RECEIVED,
            QueryState.INTENT_RESOLVED,
            QueryState.AUTHORIZATION_CHECKED,
            QueryState.EXECUTED,
            QueryState.LOGGED,
        ]

    @pytest.mark.asyncio
    async def test_supervisor_sees_whole_organization(self, seeded, supervisor):
        result = await seeded.queries.process("How many participants are there?", supervisor)

        assert result.data["count"] == 2

    @pytest.mark.asyncio
    async def test_peer_sees_only_caseload(self, seeded, peer):
        result = await seeded.queries.process("How many participants are there?", peer)

        assert result.data["count"] == 1

    @pytest.mark.asyncio
    async def test_peer_without_caseload_sees_nothing(self, seeded, peer_no_caseload):
        result = await seeded.queries.process("How many participants are there?", peer_no_caseload)

        assert result.successful
        assert result.data["count"] == 0

    @pytest.mark.asyncio
    async def test_list(self, seeded, peer):
        result = await seeded.queries.process("Show me participants in recovery", peer)

        assert result.data["count"] == 1
        assert result.data["participants"][0]["id"] == P1
        assert set(result.data["participants"][0]) == {
            "id", "status", "recovery_date", "mat_status", "follow_up_needed",
        }

    @pytest.mark.asyncio
    async def test_trend(self, seeded, admin):
        result = await seeded.queries.process("Show enrollment trends this year", admin)

        assert result.data == {"months": ["2025-03", "2025-05"], "values": [1, 1], "total": 2}
        assert result.response == "Showing trends over 2 months with a total of 2 participants."

    @pytest.mark.asyncio
    async def test_scripted_ai_intent_and_answer(self, seeded, admin, mock_llm):
        mock_llm.scripted.update({
            "query interpretation system": json.dumps({
                "intentType": "list",
                "entities": [],
                "filters": {"follow_up_needed": True},
                "requiresPHI": False,
            }),
            "formatting query results": "One participant needs follow-up.",
        })

        result = await seeded.queries.process("Which participants need a call back?", admin)

        assert result.interpreted_intent.intent_type == QueryIntentType.LIST
        assert [p["id"] for p in result.data["participants"]] == [P2]
        assert result.response == "One participant needs follow-up."


class TestQueryEngineParticipants:

    @pytest.mark.asyncio
    async def test_out_of_caseload_detail_is_denied(self, seeded, peer):
        result = await seeded.queries.process(f"Pull up {P2}", peer, documented_need=NEED)

        assert result.outcome == QueryOutcome.DENIED
        assert not result.successful
        assert result.data is None
        assert result.response == AuthorizationDenied.GENERIC_MESSAGE
        assert QueryState.DENIED in result.states
        events = await seeded.audit.query(AuditQuery(log_type=LogType.SECURITY_EVENT))
        assert events[0].details["event_type"] == "unauthorized_query_access"
        assert events[0].details["participant_id"] == P2

    @pytest.mark.asyncio
    async def test_denial_records_request_origin(self, seeded, peer):
        origin = RequestOrigin(ip_address="192.168.1.1", device_id="tablet-7")

        await seeded.queries.process(f"Pull up {P2}", peer, documented_need=NEED, origin=origin)

        events = await seeded.audit.query(AuditQuery(log_type=LogType.SECURITY_EVENT))
        assert events[0].details["ip_address"] == "192.168.1.1"
        assert events[0].details["device_id"] == "tablet-7"

    @pytest.mark.asyncio
    async def test_unknown_participant_gets_same_denial(self, seeded, admin):
        result = await seeded.queries.process(f"Pull up {UNKNOWN_PARTICIPANT}", admin, documented_need=NEED)

        assert result.outcome == QueryOutcome.DENIED
        assert result.response == AuthorizationDenied.GENERIC_MESSAGE

    @pytest.mark.asyncio
    async def test_other_organization_admin_is_denied(self, seeded):
        outsider_admin = user_context("admin-9", UserRole.ADMIN, organization_id="org-2")

        result = await seeded.queries.process(f"Pull up {P1}", outsider_admin, documented_need=NEED)

        assert result.outcome == QueryOutcome.DENIED

    @pytest.mark.asyncio
    async def test_comparison_out_of_caseload_is_denied(self, seeded, peer):
        result = await seeded.queries.process(f"Compare BARC-10 progress for {P2}", peer, documented_need=NEED)

        assert result.outcome == QueryOutcome.DENIED

    @pytest.mark.asyncio
    async def test_detail_in_caseload(self, seeded, peer):
        await seeded.consents.capture(make_consent(), actor_id=PEER)

        result = await seeded.queries.process(f"Pull up {P1}", peer, documented_need=NEED)

        assert result.outcome == QueryOutcome.EXECUTED
        assert result.data["participant"]["id"] == P1
        assert [a["total_score"] for a in result.data["assessments"]] == [38, 30]

        phi = await seeded.audit.query(AuditQuery(data_type="query_result"))
        assert len(phi) == 1
        assert f"Pull up {P1}" in phi[0].details["purpose"]
        assert len(await seeded.audit.query(AuditQuery(data_type="sud_records"))) == 1

    @pytest.mark.asyncio
    async def test_detail_requires_documented_need(self, seeded, peer):
        await seeded.consents.capture(make_consent(), actor_id=PEER)

        result = await seeded.queries.process(f"Pull up {P1}", peer)

        assert result.outcome == QueryOutcome.DENIED
        assert await seeded.audit.query(AuditQuery(data_type="query_result")) == []

    @pytest.mark.asyncio
    async def test_detail_requires_consent(self, seeded, peer):
        result = await seeded.queries.process(f"Pull up {P1}", peer, documented_need=NEED)

        assert result.outcome == QueryOutcome.DENIED
        events = await seeded.audit.query(AuditQuery(log_type=LogType.SECURITY_EVENT))
        assert events[0].details["event_type"] == "unauthorized_sud_access"

    @pytest.mark.asyncio
    async def test_comparison(self, seeded, peer):
        await seeded.consents.capture(make_consent(), actor_id=PEER)

        result = await seeded.queries.process(f"Compare BARC-10 progress for {P1}", peer, documented_need=NEED)

        assert result.successful
        assert result.data["baseline"]["score"] == 30
        assert result.data["current"]["score"] == 38
        assert result.data["change"] == 8
        assert result.data["percent_change"] == 27
        assert result.data["trend"] == "improving"
        assert result.response.startswith("Baseline score: 30, Current score: 38. Change: +8")

    @pytest.mark.asyncio
    async def test_detail_without_participant_is_an_error(self, seeded, admin):
        result = await seeded.queries.process("Pull up the participant file", admin)

        assert result.outcome == QueryOutcome.ERROR
        assert result.response.startswith("I'm sorry, I couldn't process your query.")


class TestQueryHistory:

    @pytest.mark.asyncio
    async def test_every_query_writes_one_row(self, seeded, admin, peer):
        await seeded.queries.process("How many participants are on MAT?", admin)
        await seeded.queries.process(f"Pull up {P2}", peer, documented_need=NEED)
        await seeded.queries.process("Pull up the participant file", admin)

        rows = await history_rows(seeded)
        assert len(rows) == 3
        assert [r["outcome"] for r in rows] == ["executed", "denied", "error"]
        assert [r["successful"] for r in rows] == [True, False, False]
        assert rows[1]["accessed_phi"] is False
        assert rows[1]["accessed_participant_ids"] == [P2]

    @pytest.mark.asyncio
    async def test_history_newest_first(self, seeded, admin):
        first = await seeded.queries.process("How many participants are on MAT?", admin)
        second = await seeded.queries.process("Show enrollment trends this year", admin)

        history = await seeded.queries.history(ADMIN)

        assert [h.query_id for h in history] == [second.query_id, first.query_id]
        assert history[0].timestamp == FIXED_NOW
        assert history[0].successful

    @pytest.mark.asyncio
    async def test_history_row_failure_is_escalated(self, encryptor, clock, alerts, admin):
        from beacon.services import Services

        class NoHistoryStore(InMemoryStore):
            async def insert(self, table, row):
                if Table(table) == Table.QUERIES:
                    raise StoreError("queries table unavailable")
                return await super().insert(table, row)

        services = Services.create(
            NoHistoryStore(clock=clock),
            llm=LLMClient(backend=MockLLMClient()),
            encryptor=encryptor,
            clock=clock,
            on_audit_failure=lambda operation, context: alerts.append((operation, context)),
        )

        result = await services.queries.process("How many participants are there?", admin)

        assert result.successful
        assert [op for op, _ in alerts] == ["query.history"]
        assert alerts[0][1]["query_id"] == result.query_id

    @pytest.mark.asyncio
    async def test_empty_query_logged_as_error(self, seeded, admin):
        result = await seeded.queries.process("   ", admin)

        assert result.outcome == QueryOutcome.ERROR
        assert not result.successful
        assert result.data is None
        rows = await history_rows(seeded)
        assert len(rows) == 1
        assert rows[0]["successful"] is False
        assert rows[0]["outcome"] == "error"

    @pytest.mark.asyncio
    async def test_missing_user_rejected_without_history(self, seeded):
        with pytest.raises(ValidationError):
            await seeded.queries.process("How many participants?", None)

        assert await history_rows(seeded) == []

    def test_suggestions(self, services):
        assert services.queries.suggestions() == QUERY_SUGGESTIONS
        matches = services.queries.suggestions("mat")
        assert "How many participants are currently on MAT?" in matches
        assert all("mat" in s.lower() for s in matches)


class TestExecutor:

    @pytest.fixture
    def executor(self, clock):
        return QueryExecutor(InMemoryStore(clock=clock), ComplianceSettings(), clock=clock)

    def test_unknown_filters_are_ignored(self, executor):
        intent = QueryIntent(filters={"favorite_color": "blue", "mat_status": True})

        filters = executor.participant_filters(intent)

        assert filters == [eq("mat_status", True)]

    def test_recovery_months_filter(self, executor):
        from datetime import date

        filters = executor.participant_filters(QueryIntent(filters={"recovery_months": 6}))

        assert len(filters) == 1
        assert filters[0].column == "recovery_date"
        assert filters[0].value == date(2024, 12, 15)

    @pytest.mark.parametrize("value, expected", [(True, True), ("false", False), (" TRUE ", True)])
    def test_boolean_filters_are_parsed_strictly(self, executor, value, expected):
        filters = executor.participant_filters(QueryIntent(filters={"mat_status": value}))

        assert filters == [eq("mat_status", expected)]

    @pytest.mark.parametrize("value", [">6", "6", "more than 6 months", 6.0])
    def test_recovery_months_accepts_comparisons(self, executor, value):
        from datetime import date

        filters = executor.participant_filters(QueryIntent(filters={"recovery_months": value}))

        assert filters[0].value == date(2024, 12, 15)

    @pytest.mark.parametrize("filters", [
        {"mat_status": "maybe"},
        {"follow_up_needed": 1},
        {"recovery_months": "a while"},
        {"recovery_months": True},
    ])
    def test_unparsable_known_filter_is_rejected(self, executor, filters):
        with pytest.raises(ValidationError):
            executor.participant_filters(QueryIntent(filters=filters))

    @pytest.mark.asyncio
    async def test_unparsable_ai_filter_fails_the_query(self, seeded, admin, mock_llm):
        mock_llm.scripted["query interpretation system"] = json.dumps({
            "intentType": "count",
            "entities": [],
            "filters": {"mat_status": "sometimes"},
            "requiresPHI": False,
        })

        result = await seeded.queries.process("How many participants are on MAT?", admin)

        assert result.outcome == QueryOutcome.ERROR
        assert result.data is None
        rows = await history_rows(seeded)
        assert [r["successful"] for r in rows] == [False]

    def test_sensitive_data_type(self):
        assert sensitive_data_type(QueryIntent(intent_type=QueryIntentType.COUNT, entities=[P1])) is None
        assert sensitive_data_type(
            QueryIntent(intent_type=QueryIntentType.DETAIL, entities=[P1])
        ) == "treatment_history"
        assert sensitive_data_type(QueryIntent(
            intent_type=QueryIntentType.COMPARISON,
            entities=[P1],
            filters={"assessment_type": "SUPRT_C"},
        )) == "assessment_suprt_c"

    @pytest.mark.asyncio
    async def test_comparison_needs_two_assessments(self, executor):
        data = await executor.execute(
            QueryIntent(intent_type=QueryIntentType.COMPARISON, entities=[P1]),
            user_context(ADMIN, UserRole.ADMIN),
        )

        assert data["message"] == "Not enough assessments for comparison"
        assert fallback_response(QueryIntentType.COMPARISON, data) == data["message"]


class TestResponseFormatter:

    @pytest.mark.asyncio
    async def test_timeout_uses_fallback(self):
        formatter = ResponseFormatter(SlowLLM(), timeout=0.01)

        text = await formatter.format("How many?", QueryIntentType.COUNT, {"count": 4, "filters": {}})

        assert text == "There are 4 participants matching your criteria."

    @pytest.mark.asyncio
    async def test_failure_uses_fallback(self):
        formatter = ResponseFormatter(BrokenLLM(), timeout=1)

        text = await formatter.format("List", QueryIntentType.LIST, {"participants": [], "count": 0})

        assert text == "No participants found matching your criteria."
