"""Audit Log - append-only PHI access, data change, security and session events."""
from beacon.audit.models import (
    ALERT_RESOLVED,
    AccessType,
    AuditQuery,
    AuditRecord,
    DataChangeEvent,
    LogType,
    PHIAccessEvent,
    SecurityAlert,
    SecurityEvent,
    SessionStart,
    SessionState,
    Severity,
)
from beacon.audit.service import AuditLog

__all__ = [
    "AuditLog",
    "ALERT_RESOLVED",
    "AccessType",
    "AuditQuery",
    "AuditRecord",
    "DataChangeEvent",
    "LogType",
    "PHIAccessEvent",
    "SecurityAlert",
    "SecurityEvent",
    "SessionStart",
    "SessionState",
    "Severity",
]
