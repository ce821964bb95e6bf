"""Consent Data Models"""
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ConsentType(str, Enum):
    CFR_PART_2 = "CFR_PART_2"  # regulated disclosure consent
    AI_PROCESSING = "AI_PROCESSING"
    # Enrollment-only forms, governed as CFR_PART_2
    COACHING_AGREEMENT = "COACHING_AGREEMENT"
    ACKNOWLEDGEMENT = "ACKNOWLEDGEMENT_OF_RECEIPT"

    @property
    def governing_type(self) -> "ConsentType":
        """The kind a record of this form is persisted and authorized under."""
        if self in (ConsentType.CFR_PART_2, ConsentType.COACHING_AGREEMENT, ConsentType.ACKNOWLEDGEMENT):
            return ConsentType.CFR_PART_2
        elif self == ConsentType.AI_PROCESSING:
            return ConsentType.AI_PROCESSING
        raise ValueError(f"Unhandled consent type: {self}")


class ConsentStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ConsentData(BaseModel):
    """What is captured when a participant signs a consent form."""
    participant_id: str
    consent_type: ConsentType
    participant_name: str
    date_of_birth: date
    purpose_of_disclosure: str | None = None
    authorized_recipients: list[str] = Field(default_factory=list)
    information_to_disclose: list[str] = Field(default_factory=list)
    expiration_date: date | None = None
    signature: str
    date_signed: date
    witness_name: str | None = None
    witness_signature: str | None = None


class ConsentRecord(BaseModel):
    """
    A persisted consent.

    ``signature`` and ``witness_signature`` hold encrypted handles, never
    the captured plaintext.
    """
    id: str
    participant_id: str
    consent_type: ConsentType
    form_kind: ConsentType
    participant_name: str
    date_of_birth: date
    purpose_of_disclosure: str | None = None
    authorized_recipients: list[str] = Field(default_factory=list)
    information_to_disclose: list[str] = Field(default_factory=list)
    expiration_date: date | None = None
    signature: str
    date_signed: date
    witness_name: str | None = None
    witness_signature: str | None = None
    status: ConsentStatus
    revoked_date: date | None = None
    revoked_reason: str | None = None
    created_at: datetime
    created_by: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ConsentRecord":
        return cls(
            id=str(row["id"]),
            participant_id=row["participant_id"],
            consent_type=ConsentType(row["consent_type"]),
            form_kind=ConsentType(row.get("form_kind") or row["consent_type"]),
            participant_name=row["participant_name"],
            date_of_birth=row["participant_dob"],
            purpose_of_disclosure=row.get("purpose_of_disclosure"),
            authorized_recipients=row.get("authorized_recipients") or [],
            information_to_disclose=row.get("information_to_disclose") or [],
            expiration_date=row.get("expiration_date"),
            signature=row["signature_encrypted"],
            date_signed=row["date_signed"],
            witness_name=row.get("witness_name"),
            witness_signature=row.get("witness_signature_encrypted"),
            status=ConsentStatus(row["status"]),
            revoked_date=row.get("revoked_date"),
            revoked_reason=row.get("revoked_reason"),
            created_at=row["created_at"],
            created_by=row["created_by"],
        )


class ConsentStatusSummary(BaseModel):
    """Point-in-time consent status for one participant."""
    has_regulated_consent: bool = False
    has_ai_consent: bool = False
    regulated_expiration_date: date | None = None
    ai_consent_date: date | None = None
    can_collect_phi: bool = False


def is_effective(status: ConsentStatus | str, expiration_date: date | None, on: date) -> bool:
    """Active and not past its expiration date (the expiration day itself still counts)."""
    if ConsentStatus(status) != ConsentStatus.ACTIVE:
        return False
    return expiration_date is None or expiration_date >= on
