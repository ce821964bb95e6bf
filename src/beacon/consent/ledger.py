"""
Consent Ledger

Owns the consent lifecycle: capture → active → expired | revoked.

Every authorization path re-derives effectiveness from the store on each
call. Nothing here caches consent status; revocation is visible to the
very next caller.
"""

from datetime import date, timedelta

import structlog

from beacon.audit.models import AccessType, PHIAccessEvent
from beacon.audit.service import AuditLog
from beacon.access.models import RequestOrigin
from beacon.consent.models import (
    ConsentData,
    ConsentRecord,
    ConsentStatus,
    ConsentStatusSummary,
    ConsentType,
    is_effective,
)
from beacon.errors import ValidationError
from beacon.security.encryption import DataCategory, FieldEncryptor
from beacon.store.base import Store, Table, eq, gte, in_, lte, not_null
from beacon.timeutil import Clock, today, utcnow

logger = structlog.get_logger(__name__)

_DEFAULT_ORIGIN = RequestOrigin()


class ConsentLedger:
    """
    Consent capture, status, revocation and expiration.

    Usage:
        ledger = ConsentLedger(store, audit, encryptor)
        record = await ledger.capture(data, actor_id="peer-1")
        summary = await ledger.status(record.participant_id, actor_id="peer-1")
    """

    def __init__(
        self,
        store: Store,
        audit: AuditLog,
        encryptor: FieldEncryptor,
        clock: Clock = utcnow,
        expiry_notice_days: int = 30,
    ):
        self._store = store
        self._audit = audit
        self._encryptor = encryptor
        self._clock = clock
        self._expiry_notice_days = expiry_notice_days

    def _today(self) -> date:
        return today(self._clock)

    async def _audit_access(
        self,
        actor_id: str,
        participant_id: str,
        access_type: AccessType,
        purpose: str,
        origin: RequestOrigin | None,
        data_type: str = "consent",
    ) -> None:
        origin = origin or _DEFAULT_ORIGIN
        await self._audit.record_after_commit(
            PHIAccessEvent(
                user_id=actor_id,
                participant_id=participant_id,
                access_type=access_type,
                data_type=data_type,
                purpose=purpose,
                timestamp=self._clock(),
                ip_address=origin.ip_address,
                device_id=origin.device_id,
            ),
            operation=f"consent.{access_type.value}",
        )

    async def capture(
        self,
        consent: ConsentData,
        actor_id: str,
        origin: RequestOrigin | None = None,
    ) -> ConsentRecord:
        """
        Persist a newly signed consent as ``active``.

        Signatures are encrypted before they reach the store. The audit
        event is written only once the record exists.
        """
        if not consent.participant_id:
            raise ValidationError("Participant ID is required")
        if not consent.signature:
            raise ValidationError("Signature is required")
        if not actor_id:
            raise ValidationError("User ID is required")

        signature = self._encryptor.encrypt(consent.signature, DataCategory.CONSENT)
        witness_signature = (
            self._encryptor.encrypt(consent.witness_signature, DataCategory.CONSENT)
            if consent.witness_signature
            else None
        )

        row = await self._store.insert(Table.CONSENTS, {
            "participant_id": consent.participant_id,
            "consent_type": consent.consent_type.governing_type.value,
            "form_kind": consent.consent_type.value,
            "participant_name": consent.participant_name,
            "participant_dob": consent.date_of_birth,
            "purpose_of_disclosure": consent.purpose_of_disclosure,
            "authorized_recipients": list(consent.authorized_recipients),
            "information_to_disclose": list(consent.information_to_disclose),
            "expiration_date": consent.expiration_date,
            "signature_encrypted": signature,
            "date_signed": consent.date_signed,
            "witness_name": consent.witness_name,
            "witness_signature_encrypted": witness_signature,
            "status": ConsentStatus.ACTIVE.value,
            "revoked_date": None,
            "revoked_reason": None,
            "created_by": actor_id,
            "created_at": self._clock(),
        })
        record = ConsentRecord.from_row(row)

        logger.info("Consent captured",
            consent_id=record.id,
            participant_id=record.participant_id,
            consent_type=record.consent_type.value,
            form_kind=record.form_kind.value)

        await self._audit_access(
            actor_id,
            record.participant_id,
            AccessType.WRITE,
            f"Captured {consent.consent_type.value} consent",
            origin,
        )
        return record

    async def find_effective(
        self,
        participant_id: str,
        consent_type: ConsentType,
    ) -> ConsentRecord | None:
        """Most recent effective record of ``consent_type``, read fresh from the store."""
        rows = await self._store.select(
            Table.CONSENTS,
            [
                eq("participant_id", participant_id),
                eq("consent_type", consent_type.governing_type.value),
                eq("status", ConsentStatus.ACTIVE.value),
            ],
            order_by="created_at",
            descending=True,
        )
        on = self._today()
        for row in rows:
            if is_effective(row["status"], row.get("expiration_date"), on):
                return ConsentRecord.from_row(row)
        return None

    async def status(
        self,
        participant_id: str,
        actor_id: str,
        origin: RequestOrigin | None = None,
    ) -> ConsentStatusSummary:
        """
        Current consent status of a participant.

        Expired-but-unswept records are already excluded here; the sweep
        only makes that durable. The check itself is audited as a read.
        """
        if not participant_id:
            raise ValidationError("Participant ID is required")
        if not actor_id:
            raise ValidationError("User ID is required")

        regulated = await self.find_effective(participant_id, ConsentType.CFR_PART_2)
        ai = await self.find_effective(participant_id, ConsentType.AI_PROCESSING)

        summary = ConsentStatusSummary(
            has_regulated_consent=regulated is not None,
            has_ai_consent=ai is not None,
            regulated_expiration_date=regulated.expiration_date if regulated else None,
            ai_consent_date=ai.date_signed if ai else None,
            can_collect_phi=regulated is not None,
        )

        await self._audit_access(
            actor_id, participant_id, AccessType.READ, "Retrieved consent status", origin,
        )
        return summary

    async def revoke(
        self,
        participant_id: str,
        consent_type: ConsentType,
        reason: str,
        actor_id: str,
        origin: RequestOrigin | None = None,
    ) -> None:
        """Revoke every active record of the type. Takes effect for the next call."""
        if not participant_id:
            raise ValidationError("Participant ID is required")
        if not consent_type:
            raise ValidationError("Consent type is required")
        if not actor_id:
            raise ValidationError("User ID is required")

        try:
            consent_type = ConsentType(consent_type)
        except ValueError as e:
            raise ValidationError(f"Unknown consent type: {consent_type}") from e

        filters = [
            eq("participant_id", participant_id),
            eq("consent_type", consent_type.governing_type.value),
            eq("status", ConsentStatus.ACTIVE.value),
        ]
        if consent_type.governing_type != consent_type:
            # Enrollment forms are revoked on their own; the CFR Part 2 consent stays
            filters.append(eq("form_kind", consent_type.value))

        revoked = await self._store.update(
            Table.CONSENTS,
            {
                "status": ConsentStatus.REVOKED.value,
                "revoked_date": self._today(),
                "revoked_reason": reason,
            },
            filters,
        )

        logger.info("Consent revoked",
            participant_id=participant_id,
            consent_type=consent_type.value,
            revoked_count=len(revoked))

        await self._audit_access(
            actor_id,
            participant_id,
            AccessType.WRITE,
            f"Revoked {consent_type.value} consent: {reason}",
            origin,
        )

    async def expiring_within(
        self,
        days: int | None = None,
        actor_id: str = "",
    ) -> list[ConsentRecord]:
        """
        Active consents expiring in ``[today, today + days]``, soonest first.

        ``days`` defaults to the configured renewal notice window.
        """
        if days is None:
            days = self._expiry_notice_days
        if days < 0:
            raise ValidationError("Days threshold must be non-negative")
        if not actor_id:
            raise ValidationError("User ID is required")

        start = self._today()
        rows = await self._store.select(
            Table.CONSENTS,
            [
                eq("status", ConsentStatus.ACTIVE.value),
                not_null("expiration_date"),
                gte("expiration_date", start),
                lte("expiration_date", start + timedelta(days=days)),
            ],
            order_by="expiration_date",
        )
        return [ConsentRecord.from_row(row) for row in rows]

    async def history(
        self,
        participant_id: str,
        actor_id: str,
        origin: RequestOrigin | None = None,
    ) -> list[ConsentRecord]:
        """Every consent ever captured for the participant, newest first."""
        if not participant_id:
            raise ValidationError("Participant ID is required")
        if not actor_id:
            raise ValidationError("User ID is required")

        rows = await self._store.select(
            Table.CONSENTS,
            [eq("participant_id", participant_id)],
            order_by="created_at",
            descending=True,
        )
        await self._audit_access(
            actor_id, participant_id, AccessType.READ, "Retrieved consent history", origin,
            data_type="consent_history",
        )
        return [ConsentRecord.from_row(row) for row in rows]

    async def mark_expired(self, consent_ids: list[str]) -> list[str]:
        """Durably flip still-active consents to ``expired``; returns the ids flipped."""
        if not consent_ids:
            return []
        updated = await self._store.update(
            Table.CONSENTS,
            {"status": ConsentStatus.EXPIRED.value},
            [in_("id", consent_ids), eq("status", ConsentStatus.ACTIVE.value)],
        )
        expired = [str(row["id"]) for row in updated]
        if expired:
            logger.info("Consents expired", consent_ids=expired)
        return expired
