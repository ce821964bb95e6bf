"""Sensitive-category (SUD) access control."""
from beacon.sensitive.gate import (
    GENERIC_DENIAL,
    SUD_DATA_TYPES,
    SensitiveAccessDecision,
    SensitiveAccessRequest,
    SensitiveCategoryGate,
    is_sensitive_data_type,
)

__all__ = [
    "SensitiveCategoryGate",
    "SensitiveAccessDecision",
    "SensitiveAccessRequest",
    "SUD_DATA_TYPES",
    "GENERIC_DENIAL",
    "is_sensitive_data_type",
]
