"""
Structured Logging

Features:
- JSON-formatted logs
- Redaction of signatures, encrypted values and participant identifiers-of-record
- Log level filtering via the stdlib bridge
"""

import logging
import sys

import structlog

from beacon.config import get_settings

REDACTED = "[REDACTED]"

# Keys whose values never belong in an operational log line
SENSITIVE_KEYS = frozenset({
    "signature",
    "witness_signature",
    "signature_encrypted",
    "witness_signature_encrypted",
    "old_value",
    "new_value",
    "old_value_encrypted",
    "new_value_encrypted",
    "participant_name",
    "date_of_birth",
    "participant_dob",
    "plaintext",
})


def redact_sensitive_fields(logger, method_name, event_dict):
    """Mask values of sensitive keys, including one level of nested dicts."""
    for key, value in list(event_dict.items()):
        if key in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                k: (REDACTED if k in SENSITIVE_KEYS else v) for k, v in value.items()
            }
    return event_dict


def configure_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """Configure structlog with the redaction processor in the chain."""
    settings = get_settings().app
    level = (level or settings.log_level).upper()
    json_logs = settings.log_json if json_logs is None else json_logs

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_sensitive_fields,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
