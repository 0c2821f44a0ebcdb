"""Shared fixtures: an in-memory revision history and snapshot builders."""

import hashlib
import json
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional

import pytest

from outage_tracker.history.source import Revision

T0 = datetime(2021, 1, 18, 19, 30, tzinfo=timezone.utc)
OUTAGES_PATH = "data/outages.json"


class MemoryBlob:
    def __init__(self, content: bytes):
        self.content = content
        self.hexsha = hashlib.sha1(content).hexdigest()
        self.reads = 0

    def read(self) -> bytes:
        self.reads += 1
        return self.content


class MemoryRevisions:
    """Linear history held in memory, one dict of path -> bytes per revision."""

    def __init__(self):
        self._revisions: List[Revision] = []
        self._files: Dict[str, Dict[str, MemoryBlob]] = {}

    def commit(self, committed_at: datetime, content: Optional[bytes], path: str = OUTAGES_PATH) -> Revision:
        revision = Revision(id=f"rev{len(self._revisions)}", committed_at=committed_at)
        self._revisions.append(revision)
        self._files[revision.id] = {} if content is None else {path: MemoryBlob(content)}
        return revision

    def log(self, not_before: Optional[datetime] = None) -> Iterator[Revision]:
        for revision in sorted(self._revisions, key=lambda r: r.committed_at, reverse=True):
            if not_before is not None and revision.committed_at < not_before:
                return
            yield revision

    def blob(self, revision: Revision, path: str) -> Optional[MemoryBlob]:
        return self._files[revision.id].get(path)

    def close(self) -> None:
        pass


def at(minutes: int) -> datetime:
    """Observation time `minutes` after T0."""
    return T0 + timedelta(minutes=minutes)


def raw_outage(key: str, cause: str = "Trees", cust: int = 4, source_id: str = "1", **desc) -> dict:
    """One outage as the publisher writes it. `key` becomes the encoded position."""
    return {
        "desc": {
            "cause": cause,
            "cluster": False,
            "cust_a": {"masked": False, "val": cust},
            "n_out": 1,
            "start": desc.get("start", "2021-01-18T15:15:00-0400"),
            "etr": desc.get("etr", ""),
        },
        "geom": {"p": [key]},
        "id": source_id,
        "title": "Outage Information",
    }


def snapshot(*outages: dict) -> bytes:
    return json.dumps(list(outages)).encode()


@pytest.fixture
def revisions() -> MemoryRevisions:
    return MemoryRevisions()
