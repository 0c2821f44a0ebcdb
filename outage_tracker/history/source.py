"""
History Source: replays a tracked file's published versions in time order.

Behavioral Contract:
- Yields (committed_at, content) oldest to newest, only for revisions
  strictly after the checkpoint.
- Content byte-identical to the previously seen version is never yielded
  twice in a row, however many revisions republish it.
- Resuming requires proof the checkpoint revision is still in the history.
  Without it the stream refuses to start (ContinuityError).
- Revisions that don't contain the tracked file are skipped.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional, Protocol, Tuple

from outage_tracker.errors import ContinuityError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Revision:
    """One addressable version of the history."""

    id: str
    committed_at: datetime


class Blob(Protocol):
    """A file's content at one revision."""

    @property
    def hexsha(self) -> str: ...

    def read(self) -> bytes: ...


class RevisionStore(Protocol):
    """
    Any append-only, addressable revision history.

    log() enumerates revisions from the head, newest first by committer time,
    stopping once revisions are older than `not_before` (when given).
    """

    def log(self, not_before: Optional[datetime] = None) -> Iterator[Revision]: ...

    def blob(self, revision: Revision, path: str) -> Optional[Blob]: ...


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class HistorySource:
    """Streams the versions of one tracked file out of a RevisionStore."""

    def __init__(self, revisions: RevisionStore):
        self.revisions = revisions

    def stream(
        self, path: str, since: Optional[datetime] = None
    ) -> Iterator[Tuple[datetime, bytes]]:
        """
        Walk the history and return a lazy stream of (time, content).

        The walk and the continuity check happen here, before the first item
        is produced. File contents are read lazily.
        """
        walked = self._walk(since)
        logger.info(
            "history walked %d revisions for %s since %s",
            len(walked), path, since.isoformat() if since else "the beginning",
        )
        return self._replay(path, since, walked)

    def _walk(self, since: Optional[datetime]) -> List[Revision]:
        """Collect revisions newest to oldest, down to and including the checkpoint one."""
        if since is None:
            return list(self.revisions.log())

        since = _utc(since)
        walked = []
        # One second of slack: the checkpoint revision itself must be seen.
        for revision in self.revisions.log(not_before=since - timedelta(seconds=1)):
            walked.append(revision)
            if _utc(revision.committed_at) == since:
                return walked
        raise ContinuityError(
            f"did not see a revision committed at checkpoint {since.isoformat()}"
        )

    def _replay(
        self, path: str, since: Optional[datetime], walked: List[Revision]
    ) -> Iterator[Tuple[datetime, bytes]]:
        since = _utc(since) if since is not None else None
        last_hash: Optional[str] = None
        for revision in reversed(walked):
            blob = self.revisions.blob(revision, path)
            if blob is None:
                continue

            committed_at = _utc(revision.committed_at)
            if since is not None and committed_at <= since:
                # Already consumed. Seeds change detection only.
                last_hash = blob.hexsha
                continue

            if blob.hexsha == last_hash:
                logger.debug("revision %s republishes %s unchanged", revision.id, path)
                continue
            last_hash = blob.hexsha

            yield committed_at, blob.read()
