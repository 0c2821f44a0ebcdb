"""Outage tracker data models."""

from outage_tracker.models.outage import (
    CustomersAffected,
    Outage,
    OutageDesc,
    OutageGeom,
    identity_key,
    parse_source_time,
)
from outage_tracker.models.tracking import (
    EventKind,
    KnownTable,
    ObservationResult,
    OutageSummary,
    TrackedOutage,
    TrackingEvent,
    format_time,
    parse_time,
)

__all__ = [
    "CustomersAffected",
    "EventKind",
    "KnownTable",
    "ObservationResult",
    "Outage",
    "OutageDesc",
    "OutageGeom",
    "OutageSummary",
    "TrackedOutage",
    "TrackingEvent",
    "format_time",
    "identity_key",
    "parse_source_time",
    "parse_time",
]
