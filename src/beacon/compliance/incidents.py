"""
Breach Incident Recording

A reported breach becomes one security event plus one PHI access row per
affected participant, so each participant's audit trail shows the
incident. Notification letters are produced elsewhere.
"""

import uuid
from datetime import date, datetime
from enum import Enum

import structlog
from pydantic import BaseModel, Field

from beacon.audit.models import (
    AccessType,
    AuditQuery,
    AuditRecord,
    LogType,
    PHIAccessEvent,
    SecurityEvent,
    Severity,
)
from beacon.audit.service import AuditLog
from beacon.errors import ValidationError
from beacon.timeutil import Clock, utcnow

logger = structlog.get_logger(__name__)


class IncidentType(str, Enum):
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    DATA_LOSS = "data_loss"
    DISCLOSURE_VIOLATION = "disclosure_violation"
    SYSTEM_BREACH = "system_breach"


class BreachReport(BaseModel):
    """What a reporter knows about an incident."""
    incident_type: IncidentType
    severity: Severity
    affected_participants: list[str]
    discovered_date: date
    description: str
    affected_data_types: list[str] = Field(default_factory=list)
    mitigation_steps: list[str] = Field(default_factory=list)


class BreachIncident(BreachReport):
    incident_id: str
    reported_date: datetime
    reported_by: str


class BreachIncidentRecorder:
    """
    Usage:
        recorder = BreachIncidentRecorder(audit)
        incident = await recorder.report(BreachReport(...), reported_by="admin-1")
    """

    def __init__(self, audit: AuditLog, clock: Clock = utcnow):
        self._audit = audit
        self._clock = clock

    async def report(self, report: BreachReport, reported_by: str) -> BreachIncident:
        if not reported_by:
            raise ValidationError("Reporter ID is required")
        if not report.affected_participants:
            raise ValidationError("At least one affected participant is required")

        incident_id = f"BREACH-{uuid.uuid4().hex[:8].upper()}"
        reported_at = self._clock()

        await self._audit.record_security_event(SecurityEvent(
            user_id=reported_by,
            event_type=report.incident_type.value,
            severity=report.severity,
            description=(
                f"Breach Incident {incident_id}: {report.description}. "
                f"Affected participants: {len(report.affected_participants)}. "
                f"Data types: {', '.join(report.affected_data_types)}"
            ),
            timestamp=reported_at,
        ))

        for participant_id in report.affected_participants:
            await self._audit.record_after_commit(
                PHIAccessEvent(
                    user_id=reported_by,
                    participant_id=participant_id,
                    access_type=AccessType.READ,
                    data_type="breach_incident",
                    purpose=f"Breach incident reported: {incident_id}",
                    timestamp=reported_at,
                ),
                operation="incident.report",
            )

        logger.warning("Breach incident reported",
            incident_id=incident_id,
            incident_type=report.incident_type.value,
            severity=report.severity.value,
            affected=len(report.affected_participants))

        return BreachIncident(
            **report.model_dump(),
            incident_id=incident_id,
            reported_date=reported_at,
            reported_by=reported_by,
        )

    async def incidents(self, actor_id: str) -> list[AuditRecord]:
        """Recorded incidents, newest first. Viewing them is itself a security event."""
        if not actor_id:
            raise ValidationError("User ID is required")

        incident_types = {t.value for t in IncidentType}
        records = await self._audit.query(AuditQuery(log_type=LogType.SECURITY_EVENT))
        found = [r for r in records if r.details.get("event_type") in incident_types]

        await self._audit.record_after_commit(
            SecurityEvent(
                user_id=actor_id,
                event_type="breach_history_accessed",
                severity=Severity.LOW,
                description="Accessed breach incident history",
                timestamp=self._clock(),
            ),
            operation="incident.history",
        )
        return found
