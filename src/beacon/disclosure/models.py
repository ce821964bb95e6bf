"""Disclosure Data Models"""
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from beacon.timeutil import utcnow


class DisclosureRequest(BaseModel):
    """A proposed release of information to a third party."""
    participant_id: str
    requested_by: str
    purpose: str
    recipient: str
    information_type: str
    request_date: datetime = Field(default_factory=utcnow)


class DisclosureVerification(BaseModel):
    approved: bool
    reason: str
    consent_id: str | None = None
    expiration_date: date | None = None
    restrictions: list[str] | None = None


class ReDisclosureNotice(BaseModel):
    notice_text: str
    included_date: date


class Disclosure(BaseModel):
    """What the caller asks to record after a successful verify."""
    participant_id: str
    consent_id: str
    disclosed_to: str
    purpose: str
    information_disclosed: str


class DisclosureRecord(BaseModel):
    id: str
    participant_id: str
    consent_id: str
    disclosed_to: str
    disclosed_by: str
    purpose: str
    information_disclosed: str
    disclosure_date: datetime
    re_disclosure_notice_included: bool = True
    notice_text: str
    created_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "DisclosureRecord":
        return cls(
            id=str(row["id"]),
            participant_id=row["participant_id"],
            consent_id=row["consent_id"],
            disclosed_to=row["disclosed_to"],
            disclosed_by=row["disclosed_by"],
            purpose=row["purpose"],
            information_disclosed=row["information_disclosed"],
            disclosure_date=row["disclosure_date"],
            notice_text=row["notice_text"],
            created_at=row["created_at"],
        )
