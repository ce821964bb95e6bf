"""Compliance: breach incident recording."""
from beacon.compliance.incidents import (
    BreachIncident,
    BreachIncidentRecorder,
    BreachReport,
    IncidentType,
)

__all__ = ["BreachIncident", "BreachIncidentRecorder", "BreachReport", "IncidentType"]
