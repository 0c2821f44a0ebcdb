"""
Outage Tracker: turns full snapshots into lifecycle events.

Each observe() reconciles the outages believed active (the known table)
with one newly published snapshot, matching them by identity key:

  known + observed    -> Update
  observed only       -> Initial (new surrogate id)
  known only          -> Missing (terminal, leaves the known table)

All events for one snapshot are emitted inside one store transaction. The
known table is replaced only once that transaction has committed, so a
failed observe() leaves both the store and the tracker untouched.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from outage_tracker.errors import PersistenceError
from outage_tracker.models.outage import Outage, identity_key
from outage_tracker.models.tracking import (
    EventKind,
    KnownTable,
    ObservationResult,
    TrackedOutage,
    TrackingEvent,
    format_time,
)

logger = logging.getLogger(__name__)


class Observation(Protocol):
    """Scoped write capability for one snapshot."""

    def __enter__(self) -> "Observation": ...

    def __exit__(self, exc_type, exc, tb) -> bool: ...

    def emit(self, tracked: TrackedOutage) -> int: ...

    def commit(self) -> None: ...


class TrackerStore(Protocol):
    """The store operations the tracker depends on."""

    def current_outages(self) -> Dict[int, TrackedOutage]: ...

    def begin_observation(self) -> Observation: ...


class OutageTracker:
    """Identity resolution and lifecycle state machine for outages."""

    def __init__(self, store: TrackerStore, known: Optional[KnownTable] = None):
        self.store = store
        self.known = known if known is not None else KnownTable()

    def load_state(self) -> int:
        """Seed the known table with every unresolved outage in the store."""
        entries: Dict[str, TrackedOutage] = {}
        for tracked in self.store.current_outages().values():
            entries[identity_key(tracked.outage)] = tracked
        self.known = KnownTable(entries=entries)
        return len(self.known)

    def observe(self, observed_at: datetime, outages: List[Outage]) -> ObservationResult:
        """Reconcile one snapshot against the known table and persist the diff."""
        logger.info(
            "tracker.observe time %s knowing %d and observing %d outages",
            format_time(observed_at), len(self.known), len(outages),
        )

        result = ObservationResult(observed_at=observed_at)
        next_known: Dict[str, TrackedOutage] = {}

        with self.store.begin_observation() as obs:
            for outage in outages:
                key = identity_key(outage)
                if key in next_known:
                    raise PersistenceError(
                        f"identity key {key!r} appears twice at {format_time(observed_at)}"
                    )

                known = self.known.get(key)
                if known is not None:
                    tracked = _record(known, observed_at, EventKind.UPDATE)
                    tracked = tracked.model_copy(update={"outage": outage})
                    obs.emit(tracked)
                    result.updated += 1
                else:
                    tracked = TrackedOutage(
                        events=[TrackingEvent(observed_at=observed_at, kind=EventKind.INITIAL)],
                        outage=outage,
                    )
                    outage_id = obs.emit(tracked)
                    tracked = tracked.model_copy(update={"id": outage_id})
                    result.initial += 1
                next_known[key] = tracked

            for key, known in self.known.entries.items():
                if key in next_known:
                    continue
                obs.emit(_record(known, observed_at, EventKind.MISSING))
                result.missing += 1

            obs.commit()

        self.known = KnownTable(entries=next_known)
        logger.debug(
            "observed %s: %d initial, %d updated, %d missing",
            format_time(observed_at), result.initial, result.updated, result.missing,
        )
        return result


def _record(tracked: TrackedOutage, observed_at: datetime, kind: EventKind) -> TrackedOutage:
    # A second event at the same time would collide on (outage_id, observed_at).
    try:
        return tracked.record(observed_at, kind)
    except ValueError as exc:
        raise PersistenceError(str(exc)) from exc
