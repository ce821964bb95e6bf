"""
Audit Log Service

Append-only sink for PHI access, data change, security and session events.

- No update or delete in the public contract; the single exception is
  closing a session, a targeted update keyed by (id, log_type=SESSION).
- Before/after values of data changes are encrypted before persisting.
- Audit writes that follow a committed primary write go through
  ``record_after_commit``: their failures are escalated, never raised.
"""

import inspect
from typing import Any, Awaitable, Callable

import structlog

from beacon.audit.models import (
    ALERT_RESOLVED,
    AuditQuery,
    AuditRecord,
    DataChangeEvent,
    LogType,
    PHIAccessEvent,
    SecurityAlert,
    SecurityEvent,
    SessionStart,
    Severity,
)
from beacon.errors import NotFoundError, ValidationError
from beacon.security.encryption import DataCategory, FieldEncryptor
from beacon.store.base import Store, Table, eq, gte, is_null, lte
from beacon.timeutil import Clock, utcnow

logger = structlog.get_logger(__name__)

AlertHook = Callable[[str, dict[str, Any]], Awaitable[None] | None]

AuditEvent = PHIAccessEvent | DataChangeEvent | SecurityEvent

_DETAIL_COLUMNS = {
    "user_id": "user_id",
    "participant_id": "participant_id",
    "access_type": "access_type",
    "data_type": "data_type",
    "access_purpose": "purpose",
    "access_denied": "access_denied",
    "ip_address": "ip_address",
    "device_id": "device_id",
    "table_name": "table_name",
    "record_id": "record_id",
    "field_name": "field_name",
    "old_value_encrypted": "old_value_encrypted",
    "new_value_encrypted": "new_value_encrypted",
    "change_reason": "change_reason",
    "event_type": "event_type",
    "severity": "severity",
    "event_description": "description",
    "session_type": "session_type",
    "session_start": "session_start",
    "session_end": "session_end",
    "session_summary": "session_summary",
}


def _to_record(row: dict[str, Any]) -> AuditRecord:
    details = {
        key: row[column]
        for column, key in _DETAIL_COLUMNS.items()
        if row.get(column) is not None
    }
    return AuditRecord(
        id=str(row["id"]),
        log_type=LogType(row["log_type"]),
        timestamp=row["timestamp"],
        details=details,
    )


class AuditLog:
    """
    Immutable audit trail over the ``audit_logs`` collection.

    Usage:
        audit = AuditLog(store, encryptor)
        await audit.record_phi_access(PHIAccessEvent(...))
    """

    def __init__(
        self,
        store: Store,
        encryptor: FieldEncryptor,
        clock: Clock = utcnow,
        on_write_failure: AlertHook | None = None,
    ):
        self._store = store
        self._encryptor = encryptor
        self._clock = clock
        self._on_write_failure = on_write_failure

    async def record_phi_access(self, event: PHIAccessEvent) -> str:
        """Append a PHI access event; returns the audit row id."""
        row = await self._store.insert(Table.AUDIT_LOGS, event.to_row())
        logger.info("audit_event",
            audit_id=row["id"],
            log_type=event.log_type.value,
            user_id=event.user_id,
            participant_id=event.participant_id,
            access_type=event.access_type.value,
            data_type=event.data_type,
            denied=event.access_denied)
        return str(row["id"])

    async def record_data_change(self, event: DataChangeEvent) -> str:
        """Append a data change with both values encrypted."""
        row = {
            "log_type": event.log_type.value,
            "user_id": event.user_id,
            "participant_id": event.participant_id,
            "table_name": event.table_name,
            "record_id": event.record_id,
            "field_name": event.field_name,
            "old_value_encrypted": self._seal(event.old_value),
            "new_value_encrypted": self._seal(event.new_value),
            "change_reason": event.change_reason,
            "timestamp": event.timestamp,
        }
        stored = await self._store.insert(Table.AUDIT_LOGS, row)
        logger.info("audit_event",
            audit_id=stored["id"],
            log_type=event.log_type.value,
            user_id=event.user_id,
            table_name=event.table_name,
            field_name=event.field_name)
        return str(stored["id"])

    def _seal(self, value: str | None) -> str | None:
        if value is None or value == "":
            return None
        return self._encryptor.encrypt(value, DataCategory.AUDIT)

    async def record_security_event(self, event: SecurityEvent) -> str:
        """Append a security event; high and critical severities are also logged as warnings."""
        row = await self._store.insert(Table.AUDIT_LOGS, event.to_row())
        if event.severity in (Severity.HIGH, Severity.CRITICAL):
            logger.warning("Security event",
                audit_id=row["id"],
                event_type=event.event_type,
                severity=event.severity.value,
                user_id=event.user_id)
        else:
            logger.info("Security event",
                audit_id=row["id"],
                event_type=event.event_type,
                severity=event.severity.value)
        return str(row["id"])

    async def start_session(self, session: SessionStart) -> str:
        """Open a session row and return its id for ``end_session``."""
        if not session.user_id:
            raise ValidationError("User ID is required")
        row = await self._store.insert(Table.AUDIT_LOGS, {
            "log_type": LogType.SESSION.value,
            "user_id": session.user_id,
            "participant_id": session.participant_id,
            "session_type": session.session_type,
            "session_start": session.start_time,
            "session_end": None,
            "session_summary": None,
            "timestamp": session.start_time,
        })
        logger.info("Session started", session_id=row["id"], session_type=session.session_type)
        return str(row["id"])

    async def end_session(self, session_id: str, summary: str) -> AuditRecord:
        """
        Close an open session.

        Only rows with ``log_type=SESSION`` are ever touched. Ending an
        already closed session returns it unchanged.
        """
        if not session_id:
            raise ValidationError("Session ID is required")

        keyed = [eq("id", session_id), eq("log_type", LogType.SESSION.value)]
        current = await self._store.select_one(Table.AUDIT_LOGS, keyed)
        if current is None:
            raise NotFoundError(f"Session {session_id} not found")
        if current.get("session_end") is not None:
            logger.info("Session already closed", session_id=session_id)
            return _to_record(current)

        updated = await self._store.update(
            Table.AUDIT_LOGS,
            {"session_end": self._clock(), "session_summary": summary},
            keyed + [is_null("session_end")],
        )
        if not updated:
            # Closed concurrently between read and update
            current = await self._store.select_one(Table.AUDIT_LOGS, keyed)
            return _to_record(current)

        logger.info("Session ended", session_id=session_id)
        return _to_record(updated[0])

    async def query(self, query: AuditQuery) -> list[AuditRecord]:
        """Query audit events."""
        filters = []
        if query.user_id:
            filters.append(eq("user_id", query.user_id))
        if query.participant_id:
            filters.append(eq("participant_id", query.participant_id))
        if query.log_type:
            filters.append(eq("log_type", query.log_type.value))
        if query.data_type:
            filters.append(eq("data_type", query.data_type))
        if query.start:
            filters.append(gte("timestamp", query.start))
        if query.end:
            filters.append(lte("timestamp", query.end))

        rows = await self._store.select(
            Table.AUDIT_LOGS,
            filters,
            order_by="timestamp",
            descending=not query.ascending,
            limit=query.limit,
        )
        return [_to_record(row) for row in rows]

    async def security_alerts(
        self,
        user_id: str | None = None,
        severity: Severity | None = None,
    ) -> list[SecurityAlert]:
        """
        Security events as alerts, newest first.

        High and critical alerts require action until an ``ALERT_RESOLVED``
        event names them. Resolution events themselves are not listed.
        """
        filters = [eq("log_type", LogType.SECURITY_EVENT.value)]
        if user_id:
            filters.append(eq("user_id", user_id))
        if severity:
            filters.append(eq("severity", Severity(severity).value))

        rows = await self._store.select(
            Table.AUDIT_LOGS, filters, order_by="timestamp", descending=True,
        )
        resolutions = await self._store.select(
            Table.AUDIT_LOGS,
            [eq("log_type", LogType.SECURITY_EVENT.value), eq("event_type", ALERT_RESOLVED)],
        )
        resolved = {str(r["record_id"]) for r in resolutions if r.get("record_id")}

        alerts = []
        for row in rows:
            if row.get("event_type") == ALERT_RESOLVED:
                continue
            level = Severity(row["severity"])
            is_resolved = str(row["id"]) in resolved
            alerts.append(SecurityAlert(
                alert_id=str(row["id"]),
                severity=level,
                event_type=row["event_type"],
                description=row.get("event_description") or "",
                user_id=row["user_id"],
                timestamp=row["timestamp"],
                participant_id=row.get("participant_id"),
                requires_action=level in (Severity.HIGH, Severity.CRITICAL) and not is_resolved,
                resolved=is_resolved,
            ))
        return alerts

    async def resolve_alert(self, alert_id: str, resolved_by: str, resolution: str) -> str:
        """
        Mark an alert resolved by appending an ``ALERT_RESOLVED`` event.

        The alert row itself is never modified.
        """
        if not alert_id:
            raise ValidationError("Alert ID is required")
        if not resolved_by:
            raise ValidationError("User ID is required")

        alert = await self._store.select_one(Table.AUDIT_LOGS, [
            eq("id", alert_id),
            eq("log_type", LogType.SECURITY_EVENT.value),
        ])
        if alert is None:
            raise NotFoundError(f"Security alert {alert_id} not found")

        resolution_id = await self.record_security_event(SecurityEvent(
            user_id=resolved_by,
            participant_id=alert.get("participant_id"),
            related_id=alert_id,
            event_type=ALERT_RESOLVED,
            severity=Severity.LOW,
            description=f"Resolved alert {alert_id}: {resolution}",
            timestamp=self._clock(),
        ))
        logger.info("Security alert resolved", alert_id=alert_id, resolved_by=resolved_by)
        return resolution_id

    async def record_after_commit(self, event: AuditEvent, operation: str) -> str | None:
        """
        Write the audit event for an already committed primary write.

        The primary effect stands even if this write fails; the failure is
        escalated through the alert hook and ``None`` is returned.
        """
        if isinstance(event, PHIAccessEvent):
            write = self.record_phi_access
        elif isinstance(event, DataChangeEvent):
            write = self.record_data_change
        elif isinstance(event, SecurityEvent):
            write = self.record_security_event
        else:
            raise TypeError(f"Unsupported audit event: {type(event).__name__}")

        try:
            return await write(event)
        except Exception as e:
            await self.alert(operation, {
                "log_type": event.log_type.value,
                "user_id": event.user_id,
                "participant_id": getattr(event, "participant_id", None),
                "error": str(e),
            })
            return None

    async def alert(self, operation: str, context: dict[str, Any]) -> None:
        """Escalate an operational failure that must not reach the caller."""
        context = {"operation": operation, **context}
        logger.critical("audit_write_failed", alert=True, **context)
        if self._on_write_failure is not None:
            result = self._on_write_failure(operation, context)
            if inspect.isawaitable(result):
                await result
