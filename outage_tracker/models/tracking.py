"""Tracked outages and their lifecycle events."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from outage_tracker.models.outage import Outage

STORE_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def format_time(value: datetime) -> str:
    """Render a datetime as the UTC RFC 3339 text the store sorts on."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(STORE_TIME_FORMAT)


def parse_time(value: Optional[str]) -> Optional[datetime]:
    """Inverse of format_time. Accepts any ISO 8601 text sqlite hands back."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class EventKind(str, Enum):
    INITIAL = "Initial"   # First sighting of an identity key
    UPDATE = "Update"     # Seen again, state refreshed
    MISSING = "Missing"   # Absent from a snapshot. Terminal.


class TrackingEvent(BaseModel):
    """One lifecycle transition of a tracked outage."""

    observed_at: datetime
    kind: EventKind


class TrackedOutage(BaseModel):
    """
    The persisted unit. `id` is the surrogate id assigned by the store and is
    None until the first event has been emitted.
    """

    id: Optional[int] = None
    events: List[TrackingEvent] = []
    outage: Outage

    @property
    def latest_event(self) -> TrackingEvent:
        return self.events[-1]

    @property
    def resolved(self) -> bool:
        return bool(self.events) and self.events[-1].kind == EventKind.MISSING

    def record(self, observed_at: datetime, kind: EventKind) -> "TrackedOutage":
        """Return a copy with one more event appended."""
        if self.events and observed_at <= self.events[-1].observed_at:
            raise ValueError(
                f"event at {format_time(observed_at)} does not follow "
                f"{format_time(self.events[-1].observed_at)} for outage {self.id}"
            )
        if self.resolved:
            raise ValueError(f"outage {self.id} is resolved, no further events")
        return self.model_copy(
            update={"events": self.events + [TrackingEvent(observed_at=observed_at, kind=kind)]}
        )


class OutageSummary(BaseModel):
    """Denormalized current state of one tracked outage, derived from its events."""

    id: int
    resolved: bool
    first_observed: datetime
    last_observed: datetime
    observations: int
    min_cust_aff: Optional[int] = None
    max_cust_aff: Optional[int] = None
    min_start: Optional[datetime] = None
    max_etr: Optional[datetime] = None
    last_cause: Optional[str] = None
    longitude: Optional[float] = None
    latitude: Optional[float] = None
    county: Optional[str] = None
    neighborhood: Optional[str] = None


class KnownTable(BaseModel):
    """Identity key -> outage currently believed active. Owned by one tracker."""

    entries: Dict[str, TrackedOutage] = Field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key: str) -> bool:
        return key in self.entries

    def get(self, key: str) -> Optional[TrackedOutage]:
        return self.entries.get(key)

    def keys(self) -> List[str]:
        return list(self.entries)


class ObservationResult(BaseModel):
    """Counts of events emitted for one snapshot."""

    observed_at: datetime
    initial: int = 0
    updated: int = 0
    missing: int = 0

    @property
    def total(self) -> int:
        return self.initial + self.updated + self.missing
