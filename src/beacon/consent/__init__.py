"""Consent Ledger - capture, status, revocation and expiration of participant consent."""
from beacon.consent.ledger import ConsentLedger
from beacon.consent.models import (
    ConsentData,
    ConsentRecord,
    ConsentStatus,
    ConsentStatusSummary,
    ConsentType,
    is_effective,
)

__all__ = [
    "ConsentLedger",
    "ConsentData",
    "ConsentRecord",
    "ConsentStatus",
    "ConsentStatusSummary",
    "ConsentType",
    "is_effective",
]
