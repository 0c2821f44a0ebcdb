"""
Outage Store: transactional persistence of outage lifecycle events.

Behavioral Contract:
- outages: one row per surrogate id. Ids are monotonic and never reused.
- outage_events: append-only, keyed by (outage_id, observed_at). At most one
  event per outage per observation time.
- outage_summaries: a cache derived purely from outage_events. It can be
  dropped and rebuilt at any time with rebuild_summaries().
- All events for one observation time are written in one transaction.
  Readers never see a partially applied snapshot.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from outage_tracker.errors import PersistenceError
from outage_tracker.models.outage import Outage
from outage_tracker.models.tracking import (
    EventKind,
    OutageSummary,
    TrackedOutage,
    TrackingEvent,
    format_time,
    parse_time,
)

logger = logging.getLogger(__name__)

_SUMMARY_COLUMNS = (
    "id, resolved, first_observed, last_observed, observations, "
    "min_cust_aff, max_cust_aff, min_start, max_etr, last_cause, "
    "longitude, latitude, county, neighborhood"
)

# Recomputes one outage's summary from its full event history.
_SUMMARY_SQL = """
    WITH summary AS (
        SELECT
            outage_id AS id,
            MIN(observed_at) AS first_observed,
            MAX(observed_at) AS last_observed,
            COUNT(*) AS observations,
            MIN(cust_aff) AS min_cust_aff,
            MAX(cust_aff) AS max_cust_aff,
            MIN(start) AS min_start,
            MAX(etr) AS max_etr
        FROM outage_events
        WHERE outage_id = ?
        GROUP BY outage_id
    ),
    latest AS (
        SELECT e.* FROM outage_events e, summary s
        WHERE e.outage_id = s.id AND e.observed_at = s.last_observed
    )
    INSERT INTO outage_summaries (""" + _SUMMARY_COLUMNS + """)
    SELECT
        summary.id,
        latest.event_name = 'Missing',
        summary.first_observed,
        summary.last_observed,
        summary.observations,
        summary.min_cust_aff,
        summary.max_cust_aff,
        summary.min_start,
        summary.max_etr,
        latest.cause,
        latest.longitude,
        latest.latitude,
        latest.county,
        latest.neighborhood
    FROM summary, latest
"""


def _optional(value: str) -> Optional[str]:
    return value or None


def _optional_time(value: Optional[datetime]) -> Optional[str]:
    return format_time(value) if value is not None else None


def replay_summary(outage_id: int, events: Sequence[sqlite3.Row]) -> OutageSummary:
    """
    Compute a summary from event rows alone, ordered or not.

    Mirrors what the store maintains incrementally, so the stored summary of
    any outage can be checked against a replay of its log.
    """
    if not events:
        raise ValueError(f"no events for outage {outage_id}")
    ordered = sorted(events, key=lambda r: r["observed_at"])
    latest = ordered[-1]
    cust = [r["cust_aff"] for r in ordered if r["cust_aff"] is not None]
    starts = [r["start"] for r in ordered if r["start"] is not None]
    etrs = [r["etr"] for r in ordered if r["etr"] is not None]
    return OutageSummary(
        id=outage_id,
        resolved=latest["event_name"] == EventKind.MISSING.value,
        first_observed=parse_time(ordered[0]["observed_at"]),
        last_observed=parse_time(latest["observed_at"]),
        observations=len(ordered),
        min_cust_aff=min(cust) if cust else None,
        max_cust_aff=max(cust) if cust else None,
        min_start=parse_time(min(starts)) if starts else None,
        max_etr=parse_time(max(etrs)) if etrs else None,
        last_cause=latest["cause"],
        longitude=latest["longitude"],
        latitude=latest["latitude"],
        county=latest["county"],
        neighborhood=latest["neighborhood"],
    )


class StoreObservation:
    """
    One snapshot's write scope. Emits go into a single transaction that is
    committed by commit() and rolled back on any other exit.
    """

    def __init__(self, store: "OutageStore"):
        self._store = store
        self._open = True
        store._execute("BEGIN")

    def __enter__(self) -> "StoreObservation":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._open:
            self.rollback()
        return False

    def emit(self, tracked: TrackedOutage) -> int:
        """Persist the latest event of an outage. Returns its surrogate id."""
        if not self._open:
            raise PersistenceError("observation is already closed")
        return self._store._emit(tracked)

    def commit(self) -> None:
        if not self._open:
            raise PersistenceError("observation is already closed")
        self._store._execute("COMMIT")
        self._open = False

    def rollback(self) -> None:
        if not self._open:
            return
        self._open = False
        # A failed COMMIT may already have ended the transaction.
        if self._store._conn.in_transaction:
            self._store._execute("ROLLBACK")


class OutageStore:
    """
    SQLite outage event store.
    The connection runs in autocommit mode; transactions are explicit.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        try:
            self._conn = sqlite3.connect(
                db_path, isolation_level=None, check_same_thread=False
            )
        except sqlite3.Error as exc:
            raise PersistenceError(f"opening {db_path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._execute("PRAGMA foreign_keys = ON")

    def _execute(self, sql: str, params: Sequence = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    def init(self) -> None:
        """Create the schema if it doesn't exist."""
        self._execute("""
            CREATE TABLE IF NOT EXISTS outages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                geom_p TEXT,
                longitude REAL,
                latitude REAL,
                county TEXT,
                neighborhood TEXT,
                area_polyline TEXT
            )
        """)
        self._execute("""
            CREATE TABLE IF NOT EXISTS outage_events (
                outage_id INTEGER NOT NULL REFERENCES outages ON DELETE CASCADE,
                observed_at TEXT NOT NULL,
                event_name TEXT NOT NULL,
                source_id TEXT,
                cause TEXT,
                cust_aff INTEGER,
                masked INTEGER NOT NULL DEFAULT 0,
                start TEXT,
                etr TEXT,
                geom_p TEXT,
                longitude REAL,
                latitude REAL,
                county TEXT,
                neighborhood TEXT,
                outage_json TEXT NOT NULL,
                PRIMARY KEY (outage_id, observed_at)
            )
        """)
        self._execute("""
            CREATE TABLE IF NOT EXISTS outage_summaries (
                id INTEGER PRIMARY KEY REFERENCES outages ON DELETE CASCADE,
                resolved INTEGER NOT NULL,
                first_observed TEXT NOT NULL,
                last_observed TEXT NOT NULL,
                observations INTEGER NOT NULL,
                min_cust_aff INTEGER,
                max_cust_aff INTEGER,
                min_start TEXT,
                max_etr TEXT,
                last_cause TEXT,
                longitude REAL,
                latitude REAL,
                county TEXT,
                neighborhood TEXT
            )
        """)
        self._execute("""
            CREATE INDEX IF NOT EXISTS outage_summaries_unresolved
            ON outage_summaries (id, last_observed) WHERE resolved = 0
        """)
        self._execute("""
            CREATE INDEX IF NOT EXISTS idx_outage_events_observed_at
            ON outage_events (observed_at)
        """)

    def begin_observation(self) -> StoreObservation:
        """Open the write scope for one snapshot."""
        return StoreObservation(self)

    def emit(self, tracked: TrackedOutage) -> int:
        """Persist one outage's latest event in its own transaction."""
        with self.begin_observation() as obs:
            outage_id = obs.emit(tracked)
            obs.commit()
        return outage_id

    def _emit(self, tracked: TrackedOutage) -> int:
        if not tracked.events:
            raise PersistenceError("tracked outage has no events to emit")
        outage = tracked.outage
        geom = outage.geom
        outage_id = tracked.id

        if outage_id is None:
            cursor = self._execute(
                """
                INSERT INTO outages (geom_p, longitude, latitude, county, neighborhood, area_polyline)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    geom.p[0] if geom.p else None,
                    geom.lon,
                    geom.lat,
                    _optional(geom.county),
                    _optional(geom.neighborhood),
                    geom.a[0] if geom.a else None,
                ),
            )
            outage_id = cursor.lastrowid

        event = tracked.latest_event
        self._execute(
            """
            INSERT INTO outage_events (
                outage_id, observed_at, event_name, source_id, cause, cust_aff,
                masked, start, etr, geom_p, longitude, latitude, county,
                neighborhood, outage_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                outage_id,
                format_time(event.observed_at),
                event.kind.value,
                _optional(outage.id),
                _optional(outage.desc.cause),
                outage.desc.cust_a.val,
                int(outage.desc.cust_a.masked),
                _optional_time(outage.desc.start),
                _optional_time(outage.desc.etr),
                geom.p[0] if geom.p else None,
                geom.lon,
                geom.lat,
                _optional(geom.county),
                _optional(geom.neighborhood),
                outage.model_dump_json(),
            ),
        )

        self._refresh_summary(outage_id)
        return outage_id

    def _refresh_summary(self, outage_id: int) -> None:
        self._execute("DELETE FROM outage_summaries WHERE id = ?", (outage_id,))
        self._execute(_SUMMARY_SQL, (outage_id,))

    def rebuild_summaries(self) -> int:
        """Recompute every summary from the event log. Returns the count rebuilt."""
        ids = [
            r["outage_id"]
            for r in self._execute("SELECT DISTINCT outage_id FROM outage_events").fetchall()
        ]
        with self.begin_observation() as obs:
            self._execute("DELETE FROM outage_summaries")
            for outage_id in ids:
                self._execute(_SUMMARY_SQL, (outage_id,))
            obs.commit()
        logger.info("rebuilt %d outage summaries", len(ids))
        return len(ids)

    def current_outages(self) -> Dict[int, TrackedOutage]:
        """
        Every unresolved outage with the state of its latest event.
        Each returned outage carries only that latest event.
        """
        rows = self._execute("""
            SELECT e.outage_id, e.observed_at, e.event_name, e.outage_json
            FROM outage_summaries s
            JOIN outage_events e
              ON e.outage_id = s.id AND e.observed_at = s.last_observed
            WHERE s.resolved = 0
            ORDER BY e.observed_at, e.outage_id
        """).fetchall()

        out: Dict[int, TrackedOutage] = {}
        for row in rows:
            out[row["outage_id"]] = TrackedOutage(
                id=row["outage_id"],
                events=[
                    TrackingEvent(
                        observed_at=parse_time(row["observed_at"]),
                        kind=EventKind(row["event_name"]),
                    )
                ],
                outage=Outage.model_validate_json(row["outage_json"]),
            )
        return out

    def checkpoint(self) -> Optional[datetime]:
        """The latest observation time already committed, or None for an empty store."""
        row = self._execute(
            "SELECT MAX(observed_at) AS max_observed_at FROM outage_events"
        ).fetchone()
        return parse_time(row["max_observed_at"])

    def events(self, outage_id: int) -> List[sqlite3.Row]:
        """The full event log of one outage, oldest first."""
        return self._execute(
            "SELECT * FROM outage_events WHERE outage_id = ? ORDER BY observed_at",
            (outage_id,),
        ).fetchall()

    def tracking_events(self, outage_id: int) -> List[TrackingEvent]:
        return [
            TrackingEvent(observed_at=parse_time(r["observed_at"]), kind=EventKind(r["event_name"]))
            for r in self.events(outage_id)
        ]

    def _to_summary(self, row: sqlite3.Row) -> OutageSummary:
        return OutageSummary(
            id=row["id"],
            resolved=bool(row["resolved"]),
            first_observed=parse_time(row["first_observed"]),
            last_observed=parse_time(row["last_observed"]),
            observations=row["observations"],
            min_cust_aff=row["min_cust_aff"],
            max_cust_aff=row["max_cust_aff"],
            min_start=parse_time(row["min_start"]),
            max_etr=parse_time(row["max_etr"]),
            last_cause=row["last_cause"],
            longitude=row["longitude"],
            latitude=row["latitude"],
            county=row["county"],
            neighborhood=row["neighborhood"],
        )

    def summary(self, outage_id: int) -> Optional[OutageSummary]:
        row = self._execute(
            f"SELECT {_SUMMARY_COLUMNS} FROM outage_summaries WHERE id = ?",
            (outage_id,),
        ).fetchone()
        return self._to_summary(row) if row else None

    def summaries(self, active_only: bool = False, limit: Optional[int] = None) -> List[OutageSummary]:
        """Summaries ordered by id, optionally only unresolved ones."""
        sql = f"SELECT {_SUMMARY_COLUMNS} FROM outage_summaries"
        params: list = []
        if active_only:
            sql += " WHERE resolved = 0"
        sql += " ORDER BY id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [self._to_summary(r) for r in self._execute(sql, params).fetchall()]

    def count(self) -> int:
        """Total number of outages ever tracked."""
        row = self._execute("SELECT COUNT(*) AS cnt FROM outages").fetchone()
        return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
