"""Participant safety: crisis detection."""
from beacon.safety.crisis import (
    CRISIS_RESOURCES,
    CrisisAssessment,
    CrisisDetector,
    RiskLevel,
    combine_assessments,
    parse_ai_assessment,
    rule_based_assessment,
)

__all__ = [
    "CrisisDetector",
    "CrisisAssessment",
    "RiskLevel",
    "CRISIS_RESOURCES",
    "combine_assessments",
    "parse_ai_assessment",
    "rule_based_assessment",
]
