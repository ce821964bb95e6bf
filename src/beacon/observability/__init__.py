"""Observability: structured logging with sensitive-field redaction."""
from beacon.observability.logging import configure_logging, redact_sensitive_fields

__all__ = ["configure_logging", "redact_sensitive_fields"]
