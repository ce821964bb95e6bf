"""
Sensitive-Category Access Control

Extra gate for substance-use-disorder (SUD) records, layered on top of the
generic role/assignment check. Access needs all of:
- user and participant in the same organization
- generic read access to the participant
- a substantial documented need
- an effective CFR Part 2 consent, re-derived from the ledger on every call

Every refusal writes a high-severity security event before returning.
"""

from dataclasses import dataclass, field

import structlog

from beacon.access.control import RoleAccessControl
from beacon.access.models import Action, RequestOrigin, Resource, UserContext, UserRole
from beacon.audit.models import (
    AccessType,
    AuditQuery,
    AuditRecord,
    PHIAccessEvent,
    SecurityEvent,
    Severity,
)
from beacon.audit.service import AuditLog
from beacon.consent.ledger import ConsentLedger
from beacon.consent.models import ConsentType
from beacon.errors import ValidationError
from beacon.store.base import Store, Table, eq
from beacon.timeutil import Clock, utcnow

logger = structlog.get_logger(__name__)

SUD_DATA_TYPES = [
    "substance_use_history",
    "mat_information",
    "treatment_history",
    "sud_diagnosis",
    "recovery_path",
    "assessment_suprt_c",
    "assessment_barc_10",
]

SUD_RECORDS = "sud_records"

# Same text for unknown user, unknown participant, other organization and
# no generic access
GENERIC_DENIAL = "Access to SUD records is not permitted for this request"

DEFAULT_MIN_DOCUMENTED_NEED_LENGTH = 10


def is_sensitive_data_type(data_type: str) -> bool:
    """Case-insensitive substring test against ``SUD_DATA_TYPES``."""
    lowered = data_type.lower()
    return any(sud_type.lower() in lowered for sud_type in SUD_DATA_TYPES)


@dataclass
class SensitiveAccessRequest:
    user_id: str
    participant_id: str
    documented_need: str
    purpose: str
    origin: RequestOrigin = field(default_factory=RequestOrigin)


@dataclass
class SensitiveAccessDecision:
    approved: bool
    reason: str
    restrictions: list[str] | None = None
    audit_required: bool = field(default=True, init=False)


class SensitiveCategoryGate:
    """
    Documented-need gate for SUD records.

    Usage:
        gate = SensitiveCategoryGate(store, access, ledger, audit)
        decision = await gate.verify(SensitiveAccessRequest(...))
    """

    def __init__(
        self,
        store: Store,
        access: RoleAccessControl,
        ledger: ConsentLedger,
        audit: AuditLog,
        min_documented_need_length: int = DEFAULT_MIN_DOCUMENTED_NEED_LENGTH,
        clock: Clock = utcnow,
    ):
        self._store = store
        self._access = access
        self._ledger = ledger
        self._audit = audit
        self._min_need = min_documented_need_length
        self._clock = clock

    async def verify(self, request: SensitiveAccessRequest) -> SensitiveAccessDecision:
        """Run the gate, stopping at the first failed step."""
        if not request.user_id:
            raise ValidationError("User ID is required")
        if not request.participant_id:
            raise ValidationError("Participant ID is required")
        if not request.documented_need:
            raise ValidationError("Documented need is required for SUD record access")

        user = await self._store.select_one(Table.USERS, [eq("id", request.user_id)])
        if user is None or not user.get("organization_id"):
            return await self._deny(request, "User not found or has no organization")

        participant = await self._store.select_one(
            Table.PARTICIPANTS, [eq("id", request.participant_id)]
        )
        if participant is None:
            return await self._deny(request, "Participant not found")

        if user["organization_id"] != participant.get("organization_id"):
            return await self._deny(request, "Different organization")

        context = UserContext(
            user_id=request.user_id,
            role=UserRole(user["role"]),
            organization_id=user["organization_id"],
            assigned_participants=(
                {request.participant_id}
                if participant.get("assigned_peer_id") == request.user_id
                else set()
            ),
        )
        resource = Resource(
            type="participant",
            id=request.participant_id,
            organization_id=participant["organization_id"],
        )
        if not await self._access.check_access(context, resource, Action.READ):
            return await self._deny(request, "No basic access permissions")

        if len(request.documented_need.strip()) < self._min_need:
            return await self._deny(
                request,
                "Documented need too short",
                reason=f"Documented need must be substantial (minimum {self._min_need} characters)",
                restrictions=["Provide detailed justification for accessing SUD records"],
            )

        consent = await self._ledger.find_effective(request.participant_id, ConsentType.CFR_PART_2)
        if consent is None:
            return await self._deny(
                request,
                "No effective CFR Part 2 consent",
                reason="No effective CFR Part 2 consent found for participant",
                restrictions=["SUD records require active CFR Part 2 consent"],
            )

        await self._audit.record_after_commit(
            PHIAccessEvent(
                user_id=request.user_id,
                participant_id=request.participant_id,
                access_type=AccessType.READ,
                data_type=SUD_RECORDS,
                purpose=f"SUD access - Documented need: {request.documented_need}",
                timestamp=self._clock(),
                ip_address=request.origin.ip_address,
                device_id=request.origin.device_id,
            ),
            operation="sensitive.verify",
        )
        logger.info("SUD access approved",
            user_id=request.user_id,
            participant_id=request.participant_id,
            consent_id=consent.id)
        return SensitiveAccessDecision(
            approved=True,
            reason="Access approved with documented need and valid consent",
        )

    async def _deny(
        self,
        request: SensitiveAccessRequest,
        cause: str,
        reason: str = GENERIC_DENIAL,
        restrictions: list[str] | None = None,
    ) -> SensitiveAccessDecision:
        await self._audit.record_security_event(SecurityEvent(
            user_id=request.user_id,
            participant_id=request.participant_id,
            event_type="unauthorized_sud_access",
            severity=Severity.HIGH,
            description=(
                f"Unauthorized SUD access attempt: {cause}. "
                f"Documented need: {request.documented_need}"
            ),
            timestamp=self._clock(),
            ip_address=request.origin.ip_address,
            device_id=request.origin.device_id,
        ))
        logger.warning("SUD access denied",
            user_id=request.user_id,
            participant_id=request.participant_id,
            cause=cause)
        return SensitiveAccessDecision(approved=False, reason=reason, restrictions=restrictions)

    async def check_sud_access(
        self,
        user_id: str,
        participant_id: str,
        data_type: str,
        documented_need: str,
        origin: RequestOrigin | None = None,
    ) -> bool:
        """Pass-through for non-SUD data types; full verify otherwise."""
        if not is_sensitive_data_type(data_type):
            return True
        decision = await self.verify(SensitiveAccessRequest(
            user_id=user_id,
            participant_id=participant_id,
            documented_need=documented_need,
            purpose=f"Access {data_type}",
            origin=origin or RequestOrigin(),
        ))
        return decision.approved

    async def access_audit(self, participant_id: str, actor_id: str) -> list[AuditRecord]:
        """SUD access trail for a participant, newest first. Reading it is audited too."""
        if not participant_id:
            raise ValidationError("Participant ID is required")
        if not actor_id:
            raise ValidationError("User ID is required")

        records = await self._audit.query(AuditQuery(
            participant_id=participant_id,
            data_type=SUD_RECORDS,
        ))
        await self._audit.record_after_commit(
            PHIAccessEvent(
                user_id=actor_id,
                participant_id=participant_id,
                access_type=AccessType.READ,
                data_type="sud_access_audit",
                purpose="Retrieved SUD access audit trail",
                timestamp=self._clock(),
            ),
            operation="sensitive.access_audit",
        )
        return records
