"""Tests for crisis detection: keyword rules, AI parsing and merging."""

import asyncio
import json

import pytest

from beacon.llm.client import LLMClient, MockLLMClient
from beacon.safety.crisis import (
    CrisisAssessment,
    CrisisDetector,
    RiskLevel,
    combine_assessments,
    parse_ai_assessment,
    rule_based_assessment,
)


class HangingLLM:
    async def interpret(self, prompt, text):
        await asyncio.sleep(1)
        return ""


class TestRuleBasedAssessment:

    def test_immediate(self):
        result = rule_based_assessment(["I just want to die", "nobody would notice"])

        assert result.is_crisis
        assert result.risk_level == RiskLevel.IMMEDIATE
        assert result.indicators == ['Immediate risk indicator: "want to die"']
        assert "Notify supervisor immediately" in result.recommended_actions
        assert [r["phone"] for r in result.resources] == ["988", "Text HOME to 741741"]

    def test_highest_tier_wins(self):
        result = rule_based_assessment(["I relapsed and I'm struggling"])

        assert result.risk_level == RiskLevel.HIGH
        assert result.is_crisis

    def test_medium_is_not_a_crisis(self):
        result = rule_based_assessment(["Cravings have been tough, I feel tempted"])

        assert result.risk_level == RiskLevel.MEDIUM
        assert not result.is_crisis
        assert result.resources == []

    def test_nothing_found(self):
        result = rule_based_assessment(["Had a good week at work"])

        assert result == CrisisAssessment()


class TestAIAssessment:

    def test_parse(self):
        result = parse_ai_assessment(json.dumps({
            "isCrisis": True,
            "riskLevel": "HIGH",
            "indicators": ["mentions relapse"],
            "recommendedActions": ["Call today"],
        }))

        assert result.risk_level == RiskLevel.HIGH
        assert result.indicators == ["mentions relapse"]

    def test_unknown_level_escalates(self):
        result = parse_ai_assessment('{"isCrisis": false, "riskLevel": "severe"}')

        assert result.risk_level == RiskLevel.HIGH

    def test_unparsable(self):
        assert parse_ai_assessment("I cannot help with that") is None

    def test_ai_cannot_lower_rules(self):
        ai = CrisisAssessment(risk_level=RiskLevel.LOW, indicators=["calm tone"])
        rules = rule_based_assessment(["I overdosed last night"])

        combined = combine_assessments(ai, rules)

        assert combined.risk_level == RiskLevel.IMMEDIATE
        assert combined.is_crisis
        assert combined.indicators[0] == "calm tone"

    def test_ai_can_raise(self):
        ai = CrisisAssessment(is_crisis=True, risk_level=RiskLevel.HIGH)
        rules = CrisisAssessment(risk_level=RiskLevel.MEDIUM)

        assert combine_assessments(ai, rules).risk_level == RiskLevel.HIGH

    def test_risk_order(self):
        ranks = [level.rank for level in (RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.IMMEDIATE)]
        assert ranks == sorted(ranks)


class TestCrisisDetector:

    @pytest.mark.asyncio
    async def test_uses_ai_answer(self):
        llm = LLMClient(backend=MockLLMClient({
            "crisis detection system": json.dumps({
                "isCrisis": True,
                "riskLevel": "high",
                "indicators": ["lost housing"],
                "recommendedActions": ["Connect with housing services"],
            }),
        }))
        detector = CrisisDetector(llm)

        result = await detector.detect(["Landlord changed the locks today"])

        assert result.is_crisis
        assert result.risk_level == RiskLevel.HIGH
        assert result.indicators == ["lost housing"]
        assert result.resources[0]["name"] == "988 Suicide & Crisis Lifeline"

    @pytest.mark.asyncio
    async def test_empty_answer_falls_back(self):
        detector = CrisisDetector(LLMClient(backend=MockLLMClient()))

        result = await detector.detect(["I'm homeless and have nowhere to go"])

        assert result.risk_level == RiskLevel.HIGH

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self):
        detector = CrisisDetector(HangingLLM(), timeout=0.01)

        result = await detector.detect(["thinking about suicide"])

        assert result.risk_level == RiskLevel.IMMEDIATE

    @pytest.mark.asyncio
    async def test_no_messages(self):
        detector = CrisisDetector(None)

        assert await detector.detect([]) == CrisisAssessment()
