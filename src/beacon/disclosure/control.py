"""
Disclosure Control

Gate for releasing participant information to third parties under
42 CFR Part 2:
- verify a proposed disclosure against the participant's effective consents
- attach the mandatory re-disclosure notice
- record the disclosure, re-verifying the referenced consent first
- sweep expired consents so the ledger's ``active`` status stays truthful
"""

import structlog

from beacon.access.models import RequestOrigin
from beacon.audit.models import AccessType, PHIAccessEvent, SecurityEvent, Severity
from beacon.audit.service import AuditLog
from beacon.consent.ledger import ConsentLedger
from beacon.consent.models import ConsentStatus, ConsentType, is_effective
from beacon.disclosure.matching import purpose_matches, recipient_authorized
from beacon.disclosure.models import (
    Disclosure,
    DisclosureRecord,
    DisclosureRequest,
    DisclosureVerification,
)
from beacon.disclosure.notice import generate_re_disclosure_notice
from beacon.errors import AuthorizationDenied, ValidationError
from beacon.store.base import Store, Table, eq, lt, not_null
from beacon.timeutil import Clock, today, utcnow

logger = structlog.get_logger(__name__)

DISCLOSURE_RESTRICTIONS = [
    "Disclosure requires explicit written consent",
    "Consent must specify the recipient and purpose",
    "Consent must not be expired",
]

_DEFAULT_ORIGIN = RequestOrigin()


class DisclosureControl:
    """
    Verifies and records disclosures of participant information.

    Usage:
        control = DisclosureControl(store, audit, ledger)
        result = await control.verify(DisclosureRequest(...))
        if result.approved:
            await control.record_disclosure(Disclosure(consent_id=result.consent_id, ...), actor_id)
    """

    def __init__(
        self,
        store: Store,
        audit: AuditLog,
        ledger: ConsentLedger,
        clock: Clock = utcnow,
    ):
        self._store = store
        self._audit = audit
        self._ledger = ledger
        self._clock = clock

    async def _regulated_consents(self, participant_id: str) -> list[dict]:
        return await self._store.select(
            Table.CONSENTS,
            [
                eq("participant_id", participant_id),
                eq("consent_type", ConsentType.CFR_PART_2.value),
                eq("status", ConsentStatus.ACTIVE.value),
            ],
            order_by="created_at",
            descending=True,
        )

    async def verify(self, request: DisclosureRequest) -> DisclosureVerification:
        """
        Check a proposed disclosure against the participant's consents.

        The first effective consent whose recipients and purpose both match
        wins; there is no ranking. Approvals and denials are both audited.
        """
        if not request.participant_id:
            raise ValidationError("Participant ID is required")
        if not request.requested_by:
            raise ValidationError("Requester ID is required")
        if not request.recipient or not request.recipient.strip():
            raise ValidationError("Recipient is required")
        if not request.purpose or not request.purpose.strip():
            raise ValidationError("Purpose is required")

        consents = await self._regulated_consents(request.participant_id)
        on = today(self._clock)

        match = None
        for consent in consents:
            if not is_effective(consent["status"], consent.get("expiration_date"), on):
                continue
            if (
                recipient_authorized(consent.get("authorized_recipients"), request.recipient)
                and purpose_matches(consent.get("purpose_of_disclosure"), request.purpose)
            ):
                match = consent
                break

        if match is None:
            reason = (
                "No active CFR Part 2 consent found for participant"
                if not consents
                else "No consent found matching the requested recipient and purpose"
            )
            logger.info("Disclosure denied",
                participant_id=request.participant_id,
                requested_by=request.requested_by,
                candidates=len(consents))
            await self._audit_verification(request, denied=True)
            return DisclosureVerification(
                approved=False,
                reason=reason,
                restrictions=list(DISCLOSURE_RESTRICTIONS),
            )

        logger.info("Disclosure approved",
            participant_id=request.participant_id,
            consent_id=match["id"])
        await self._audit_verification(request, denied=False)
        return DisclosureVerification(
            approved=True,
            reason="Valid consent found for disclosure",
            consent_id=str(match["id"]),
            expiration_date=match.get("expiration_date"),
        )

    async def _audit_verification(self, request: DisclosureRequest, denied: bool) -> None:
        verb = "Denied" if denied else "Verified"
        await self._audit.record_after_commit(
            PHIAccessEvent(
                user_id=request.requested_by,
                participant_id=request.participant_id,
                access_type=AccessType.READ,
                data_type="consent_verification",
                purpose=f"{verb} disclosure to {request.recipient} for {request.purpose}",
                timestamp=self._clock(),
                access_denied=denied,
            ),
            operation="disclosure.verify",
        )

    async def record_disclosure(
        self,
        disclosure: Disclosure,
        actor_id: str,
        origin: RequestOrigin | None = None,
    ) -> DisclosureRecord:
        """
        Record a disclosure that a prior verify approved.

        The referenced consent is re-checked here; a disclosure against a
        consent that is no longer effective or does not cover the recipient
        and purpose raises ``AuthorizationDenied`` and is logged as a
        security event.
        """
        if not disclosure.participant_id:
            raise ValidationError("Participant ID is required")
        if not disclosure.consent_id:
            raise ValidationError("Consent ID is required")
        if not actor_id:
            raise ValidationError("User ID is required")

        consent = await self._store.select_one(Table.CONSENTS, [eq("id", disclosure.consent_id)])
        problem = self._consent_problem(consent, disclosure)
        if problem is not None:
            await self._audit.record_security_event(SecurityEvent(
                user_id=actor_id,
                participant_id=disclosure.participant_id,
                event_type="disclosure_violation",
                severity=Severity.HIGH,
                description=f"Disclosure to {disclosure.disclosed_to} blocked: {problem}",
                timestamp=self._clock(),
                ip_address=(origin or _DEFAULT_ORIGIN).ip_address,
                device_id=(origin or _DEFAULT_ORIGIN).device_id,
            ))
            raise AuthorizationDenied()

        disclosed_at = self._clock()
        notice = generate_re_disclosure_notice(disclosed_at)
        row = await self._store.insert(Table.DISCLOSURES, {
            "participant_id": disclosure.participant_id,
            "consent_id": disclosure.consent_id,
            "disclosed_to": disclosure.disclosed_to,
            "disclosed_by": actor_id,
            "purpose": disclosure.purpose,
            "information_disclosed": disclosure.information_disclosed,
            "disclosure_date": disclosed_at,
            "re_disclosure_notice_included": True,
            "notice_text": notice.notice_text,
            "created_at": disclosed_at,
        })
        record = DisclosureRecord.from_row(row)

        logger.info("Disclosure recorded",
            disclosure_id=record.id,
            participant_id=record.participant_id,
            consent_id=record.consent_id)

        origin = origin or _DEFAULT_ORIGIN
        await self._audit.record_after_commit(
            PHIAccessEvent(
                user_id=actor_id,
                participant_id=disclosure.participant_id,
                access_type=AccessType.EXPORT,
                data_type="disclosure",
                purpose=(
                    f"Disclosed {disclosure.information_disclosed} to "
                    f"{disclosure.disclosed_to}: {disclosure.purpose}"
                ),
                timestamp=disclosed_at,
                ip_address=origin.ip_address,
                device_id=origin.device_id,
            ),
            operation="disclosure.record",
        )
        return record

    def _consent_problem(self, consent: dict | None, disclosure: Disclosure) -> str | None:
        """Why ``consent`` cannot back ``disclosure``, or None if it can."""
        if consent is None:
            return "consent not found"
        if consent["participant_id"] != disclosure.participant_id:
            return "consent belongs to another participant"
        if consent["consent_type"] != ConsentType.CFR_PART_2.value:
            return "consent is not a disclosure consent"
        if not is_effective(consent["status"], consent.get("expiration_date"), today(self._clock)):
            return "consent is not effective"
        if not recipient_authorized(consent.get("authorized_recipients"), disclosure.disclosed_to):
            return "recipient not authorized by consent"
        if not purpose_matches(consent.get("purpose_of_disclosure"), disclosure.purpose):
            return "purpose not covered by consent"
        return None

    async def check_expired_consents(self, participant_id: str) -> list[str]:
        """Flip active consents past their expiration date to ``expired``."""
        if not participant_id:
            raise ValidationError("Participant ID is required")

        rows = await self._store.select(
            Table.CONSENTS,
            [
                eq("participant_id", participant_id),
                eq("status", ConsentStatus.ACTIVE.value),
                not_null("expiration_date"),
                lt("expiration_date", today(self._clock)),
            ],
        )
        if not rows:
            return []
        return await self._ledger.mark_expired([str(row["id"]) for row in rows])

    async def disclosure_history(
        self,
        participant_id: str,
        actor_id: str,
        origin: RequestOrigin | None = None,
    ) -> list[DisclosureRecord]:
        """All disclosures for a participant, newest first."""
        if not participant_id:
            raise ValidationError("Participant ID is required")
        if not actor_id:
            raise ValidationError("User ID is required")

        rows = await self._store.select(
            Table.DISCLOSURES,
            [eq("participant_id", participant_id)],
            order_by="disclosure_date",
            descending=True,
        )

        origin = origin or _DEFAULT_ORIGIN
        await self._audit.record_after_commit(
            PHIAccessEvent(
                user_id=actor_id,
                participant_id=participant_id,
                access_type=AccessType.READ,
                data_type="disclosure_history",
                purpose="Retrieved disclosure history",
                timestamp=self._clock(),
                ip_address=origin.ip_address,
                device_id=origin.device_id,
            ),
            operation="disclosure.history",
        )
        return [DisclosureRecord.from_row(row) for row in rows]
