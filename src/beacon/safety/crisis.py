"""
Crisis Detection

Rule-based keyword detection runs on every conversation as a safety net
beside the AI assessment. The two are merged by the higher risk level;
the AI can raise the outcome but never lower it.
"""

import asyncio
from enum import Enum
from typing import Iterable

import structlog
from pydantic import BaseModel, Field

from beacon.llm.client import LLMClient, extract_json

logger = structlog.get_logger(__name__)


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    IMMEDIATE = "immediate"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.IMMEDIATE]


class CrisisAssessment(BaseModel):
    is_crisis: bool = False
    risk_level: RiskLevel = RiskLevel.LOW
    indicators: list[str] = Field(default_factory=list)
    recommended_actions: list[str] = Field(default_factory=list)
    resources: list[dict[str, str]] = Field(default_factory=list)


IMMEDIATE_KEYWORDS = [
    "kill myself",
    "end my life",
    "suicide",
    "want to die",
    "overdose",
    "overdosed",
    "can't go on",
    "better off dead",
    "goodbye forever",
]

HIGH_RISK_KEYWORDS = [
    "relapsed",
    "using again",
    "bought drugs",
    "self-harm",
    "cut myself",
    "hurt myself",
    "abuse",
    "beaten",
    "threatened",
    "homeless",
    "nowhere to go",
]

MEDIUM_RISK_KEYWORDS = [
    "struggling",
    "can't cope",
    "overwhelming",
    "hopeless",
    "worthless",
    "giving up",
    "craving",
    "tempted",
]

RECOMMENDED_ACTIONS = {
    RiskLevel.IMMEDIATE: [
        "IMMEDIATE ACTION REQUIRED",
        "Contact emergency services (911) if participant is in immediate danger",
        "Do not leave participant alone",
        "Contact crisis hotline: 988 Suicide & Crisis Lifeline",
        "Notify supervisor immediately",
        "Implement safety plan",
    ],
    RiskLevel.HIGH: [
        "Contact supervisor for guidance",
        "Assess immediate safety",
        "Provide crisis resources and hotlines",
        "Schedule urgent follow-up within 24 hours",
        "Review and update safety plan",
    ],
    RiskLevel.MEDIUM: [
        "Explore concerns in more depth",
        "Assess coping strategies",
        "Provide support resources",
        "Schedule follow-up within 3-5 days",
        "Document concerns in session notes",
    ],
    RiskLevel.LOW: [],
}

CRISIS_RESOURCES = [
    {
        "name": "988 Suicide & Crisis Lifeline",
        "phone": "988",
        "description": "24/7 free and confidential support for people in distress",
    },
    {
        "name": "Crisis Text Line",
        "phone": "Text HOME to 741741",
        "description": "Free 24/7 support via text message",
    },
]


def _resources_for(is_crisis: bool) -> list[dict[str, str]]:
    return [dict(r) for r in CRISIS_RESOURCES] if is_crisis else []


CRISIS_PROMPT = """You are a crisis detection system for substance use disorder recovery programs.
Analyze conversations for signs of immediate risk or crisis situations.

Risk Levels:
- immediate: Active suicidal/homicidal ideation, overdose, medical emergency
- high: Recent relapse, severe symptoms, safety concerns, abuse situation
- medium: Expressed distress, risk factors present, concerning statements
- low: No significant crisis indicators detected

Return ONLY a JSON object with:
{
  "isCrisis": boolean,
  "riskLevel": "immediate" | "high" | "medium" | "low",
  "indicators": ["specific indicators found"],
  "recommendedActions": ["recommended immediate actions"]
}

Be conservative. If in doubt, escalate the risk level."""


def rule_based_assessment(messages: Iterable[str]) -> CrisisAssessment:
    """Keyword scan. Pure; the highest matching tier wins."""
    text = " ".join(messages).lower()

    tiers = [
        (RiskLevel.IMMEDIATE, "Immediate", IMMEDIATE_KEYWORDS),
        (RiskLevel.HIGH, "High", HIGH_RISK_KEYWORDS),
        (RiskLevel.MEDIUM, "Medium", MEDIUM_RISK_KEYWORDS),
    ]
    for level, label, keywords in tiers:
        indicators = [f'{label} risk indicator: "{k}"' for k in keywords if k in text]
        if indicators:
            return CrisisAssessment(
                is_crisis=level in (RiskLevel.IMMEDIATE, RiskLevel.HIGH),
                risk_level=level,
                indicators=indicators,
                recommended_actions=list(RECOMMENDED_ACTIONS[level]),
                resources=_resources_for(level in (RiskLevel.IMMEDIATE, RiskLevel.HIGH)),
            )
    return CrisisAssessment()


def parse_ai_assessment(text: str) -> CrisisAssessment | None:
    parsed = extract_json(text)
    if parsed is None:
        return None
    try:
        risk_level = RiskLevel(str(parsed.get("riskLevel", "low")).lower())
    except ValueError:
        # Unknown level from the model: escalate rather than ignore
        risk_level = RiskLevel.HIGH
    return CrisisAssessment(
        is_crisis=bool(parsed.get("isCrisis", False)),
        risk_level=risk_level,
        indicators=[str(i) for i in parsed.get("indicators") or []],
        recommended_actions=[str(a) for a in parsed.get("recommendedActions") or []],
    )


def combine_assessments(ai: CrisisAssessment, rules: CrisisAssessment) -> CrisisAssessment:
    """Higher risk level wins; indicators and actions are unioned in order."""
    risk_level = ai.risk_level if ai.risk_level.rank >= rules.risk_level.rank else rules.risk_level
    return CrisisAssessment(
        is_crisis=ai.is_crisis or rules.is_crisis,
        risk_level=risk_level,
        indicators=list(dict.fromkeys(ai.indicators + rules.indicators)),
        recommended_actions=list(dict.fromkeys(ai.recommended_actions + rules.recommended_actions)),
        resources=_resources_for(ai.is_crisis or rules.is_crisis),
    )


class CrisisDetector:
    """
    Usage:
        detector = CrisisDetector(llm)
        assessment = await detector.detect(["I relapsed last night"])
    """

    def __init__(self, llm: LLMClient | None, timeout: float = 5.0):
        self._llm = llm
        self._timeout = timeout

    async def detect(self, messages: list[str]) -> CrisisAssessment:
        if not messages:
            return CrisisAssessment()

        rules = rule_based_assessment(messages)
        if self._llm is None:
            return rules

        conversation = "\n".join(messages)
        try:
            answer = await asyncio.wait_for(
                self._llm.interpret(
                    CRISIS_PROMPT,
                    f"Analyze this conversation for crisis indicators:\n\n{conversation}",
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Crisis detection timed out, using rule-based result")
            return rules
        except Exception as e:
            logger.warning("Crisis detection failed, using rule-based result", error=str(e))
            return rules

        ai = parse_ai_assessment(answer)
        if ai is None:
            return rules

        combined = combine_assessments(ai, rules)
        if combined.is_crisis:
            logger.warning("Crisis detected", risk_level=combined.risk_level.value)
        return combined
