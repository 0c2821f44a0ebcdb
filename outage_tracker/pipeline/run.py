"""
Ingestion run: wires history, decoding, placing, tracking and storage.

One pass, one thread, one snapshot at a time in commit order. The first
failure aborts the run; the next run resumes from the store's checkpoint.
"""

import logging
from contextlib import closing
from typing import Callable, List, Optional

from pydantic import BaseModel

from outage_tracker.config import Settings
from outage_tracker.enrichment.decode import decode_snapshot
from outage_tracker.enrichment.placer import Placer, load_places
from outage_tracker.history.source import HistorySource, RevisionStore
from outage_tracker.models.outage import Outage
from outage_tracker.store.store import OutageStore
from outage_tracker.tracker.tracker import OutageTracker

logger = logging.getLogger(__name__)


class RunResult(BaseModel):
    """What one ingestion run did."""

    snapshots: int = 0
    initial: int = 0
    updated: int = 0
    missing: int = 0

    @property
    def events(self) -> int:
        return self.initial + self.updated + self.missing


def open_revisions(settings: Settings) -> RevisionStore:
    """A local clone is preferred over the remote."""
    from outage_tracker.history.gitstore import GitRevisionStore

    if settings.repo_path:
        return GitRevisionStore.from_path(settings.repo_path)
    if settings.repo_remote:
        return GitRevisionStore.clone(settings.repo_remote)
    raise ValueError("need repo_remote or repo_path")


def ingest(
    store: OutageStore,
    revisions: RevisionStore,
    tracked_path: str,
    enrich: Callable[[List[Outage]], List[Outage]],
) -> RunResult:
    """Replay every snapshot after the store's checkpoint through the tracker."""
    store.init()
    tracker = OutageTracker(store)
    tracker.load_state()
    since = store.checkpoint()

    logger.info(
        "tracker starting with %d known outages and sourcing after %s",
        len(tracker.known), since.isoformat() if since else "the beginning",
    )

    result = RunResult()
    source = HistorySource(revisions)
    for observed_at, content in source.stream(tracked_path, since):
        outages = enrich(decode_snapshot(content))
        observed = tracker.observe(observed_at, outages)
        result.snapshots += 1
        result.initial += observed.initial
        result.updated += observed.updated
        result.missing += observed.missing

    logger.info(
        "run complete: %d snapshots, %d events (%d initial, %d updated, %d missing), %d still active",
        result.snapshots, result.events, result.initial, result.updated,
        result.missing, len(tracker.known),
    )
    return result


def run(settings: Settings, revisions: Optional[RevisionStore] = None) -> RunResult:
    """Run one ingestion pass as configured."""
    placer = Placer(load_places(settings.places_file), cache_size=settings.place_cache_size)
    logger.info("placer loaded %d places", len(placer.places))

    with closing(OutageStore(settings.database_file)) as store:
        if revisions is not None:
            return ingest(store, revisions, settings.tracked_path, placer.enrich)
        with closing(open_revisions(settings)) as git_revisions:
            return ingest(store, git_revisions, settings.tracked_path, placer.enrich)
