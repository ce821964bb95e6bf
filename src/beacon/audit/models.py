"""Audit Models"""
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from beacon.timeutil import utcnow


class LogType(str, Enum):
    PHI_ACCESS = "PHI_ACCESS"
    DATA_CHANGE = "DATA_CHANGE"
    SECURITY_EVENT = "SECURITY_EVENT"
    SESSION = "SESSION"


class AccessType(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    EXPORT = "export"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


ALERT_RESOLVED = "ALERT_RESOLVED"


class SessionState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class PHIAccessEvent(BaseModel):
    """Who touched which participant's PHI, how, and why."""
    log_type: ClassVar[LogType] = LogType.PHI_ACCESS

    user_id: str
    participant_id: str
    access_type: AccessType
    data_type: str
    purpose: str
    timestamp: datetime = Field(default_factory=utcnow)
    ip_address: str = "0.0.0.0"
    device_id: str = "system"
    # Denied attempts are audited too; never silent
    access_denied: bool = False

    def to_row(self) -> dict[str, Any]:
        return {
            "log_type": self.log_type.value,
            "user_id": self.user_id,
            "participant_id": self.participant_id,
            "access_type": self.access_type.value,
            "data_type": self.data_type,
            "access_purpose": self.purpose,
            "ip_address": self.ip_address,
            "device_id": self.device_id,
            "access_denied": self.access_denied,
            "timestamp": self.timestamp,
        }


class DataChangeEvent(BaseModel):
    """
    A field-level modification.

    ``old_value``/``new_value`` are plaintext on the way in and are
    encrypted by the audit log before they are persisted.
    """
    log_type: ClassVar[LogType] = LogType.DATA_CHANGE

    user_id: str
    participant_id: str
    table_name: str
    record_id: str
    field_name: str
    old_value: str | None = None
    new_value: str | None = None
    change_reason: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class SecurityEvent(BaseModel):
    log_type: ClassVar[LogType] = LogType.SECURITY_EVENT

    user_id: str
    event_type: str
    severity: Severity
    description: str
    participant_id: str | None = None
    # Audit row this event refers to, e.g. the alert an ALERT_RESOLVED closes
    related_id: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)
    ip_address: str = "0.0.0.0"
    device_id: str = "system"

    def to_row(self) -> dict[str, Any]:
        return {
            "log_type": self.log_type.value,
            "user_id": self.user_id,
            "participant_id": self.participant_id,
            "record_id": self.related_id,
            "event_type": self.event_type,
            "severity": self.severity.value,
            "event_description": self.description,
            "ip_address": self.ip_address,
            "device_id": self.device_id,
            "timestamp": self.timestamp,
        }


class SecurityAlert(BaseModel):
    """A security event as surfaced to administrators."""
    alert_id: str
    severity: Severity
    event_type: str
    description: str
    user_id: str
    timestamp: datetime
    participant_id: str | None = None
    requires_action: bool = False
    resolved: bool = False


class SessionStart(BaseModel):
    user_id: str
    session_type: str
    participant_id: str | None = None
    start_time: datetime = Field(default_factory=utcnow)


class AuditRecord(BaseModel):
    """A persisted audit row as returned by queries."""
    id: str
    log_type: LogType
    timestamp: datetime
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def session_state(self) -> SessionState | None:
        if self.log_type != LogType.SESSION:
            return None
        return SessionState.CLOSED if self.details.get("session_end") else SessionState.OPEN


class AuditQuery(BaseModel):
    """Filters are AND-ed; results are newest first unless ``ascending``."""
    user_id: str | None = None
    participant_id: str | None = None
    log_type: LogType | None = None
    data_type: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int | None = None
    ascending: bool = False
