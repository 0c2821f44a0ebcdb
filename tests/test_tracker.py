"""Tests for the Outage Tracker."""

import random

import pytest

from conftest import at, raw_outage
from outage_tracker.errors import PersistenceError
from outage_tracker.models.outage import Outage
from outage_tracker.models.tracking import EventKind, KnownTable
from outage_tracker.store.store import OutageStore, replay_summary
from outage_tracker.tracker.tracker import OutageTracker


def _outages(*specs) -> list:
    """Build outages from (key, cause) pairs."""
    return [Outage.model_validate(raw_outage(key, cause=cause)) for key, cause in specs]


def _kinds(store: OutageStore, outage_id: int) -> list:
    return [e.kind for e in store.tracking_events(outage_id)]


class FailingStore(OutageStore):
    """Fails the emit after `fail_after` successful ones."""

    def __init__(self, fail_after: int):
        super().__init__(":memory:")
        self.fail_after = fail_after
        self.emitted = 0
        self.armed = False

    def _emit(self, tracked):
        if self.armed and self.emitted >= self.fail_after:
            raise PersistenceError("disk full")
        self.emitted += 1
        return super()._emit(tracked)


class TestOutageTracker:
    def setup_method(self):
        self.store = OutageStore(db_path=":memory:")
        self.store.init()
        self.tracker = OutageTracker(self.store)

    def test_three_snapshot_scenario(self):
        first = self.tracker.observe(at(1), _outages(("A", "Trees")))
        assert (first.initial, first.updated, first.missing) == (1, 0, 0)
        a_id = self.tracker.known.get("A").id

        second = self.tracker.observe(at(2), _outages(("A", "Trees"), ("B", "Wind")))
        assert (second.initial, second.updated, second.missing) == (1, 1, 0)
        b_id = self.tracker.known.get("B").id
        assert b_id != a_id

        third = self.tracker.observe(at(3), _outages(("B", "Wind")))
        assert (third.initial, third.updated, third.missing) == (0, 1, 1)

        assert _kinds(self.store, a_id) == [EventKind.INITIAL, EventKind.UPDATE, EventKind.MISSING]
        assert _kinds(self.store, b_id) == [EventKind.INITIAL, EventKind.UPDATE]
        assert self.tracker.known.keys() == ["B"]

    def test_source_id_is_not_identity(self):
        """The publisher reuses ids; only the identity key matters."""
        first = [Outage.model_validate(raw_outage("A", source_id="7"))]
        second = [Outage.model_validate(raw_outage("B", source_id="7"))]

        self.tracker.observe(at(1), first)
        result = self.tracker.observe(at(2), second)

        assert (result.initial, result.updated, result.missing) == (1, 0, 1)
        assert self.store.count() == 2

    def test_update_replaces_state(self):
        self.tracker.observe(at(1), _outages(("A", "Trees")))
        self.tracker.observe(at(2), _outages(("A", "Wind")))

        known = self.tracker.known.get("A")
        assert known.outage.desc.cause == "Wind"
        assert self.store.summary(known.id).last_cause == "Wind"

    def test_reappearance_gets_new_identity(self):
        self.tracker.observe(at(1), _outages(("A", "Trees")))
        old_id = self.tracker.known.get("A").id
        self.tracker.observe(at(2), [])
        self.tracker.observe(at(3), _outages(("A", "Trees")))
        new_id = self.tracker.known.get("A").id

        assert new_id != old_id
        assert _kinds(self.store, old_id) == [EventKind.INITIAL, EventKind.MISSING]
        assert _kinds(self.store, new_id) == [EventKind.INITIAL]

    def test_empty_snapshot_resolves_everything(self):
        self.tracker.observe(at(1), _outages(("A", "Trees"), ("B", "Wind")))
        result = self.tracker.observe(at(2), [])

        assert result.missing == 2
        assert len(self.tracker.known) == 0
        assert self.store.current_outages() == {}

    @pytest.mark.parametrize("causes", [("Trees", "Wind"), ("Wind", "Trees")])
    def test_duplicate_key_in_snapshot_aborts(self, causes):
        self.tracker.observe(at(1), _outages(("B", "Ice")))
        known_before = self.tracker.known

        with pytest.raises(PersistenceError):
            self.tracker.observe(at(2), _outages(("A", causes[0]), ("B", "Ice"), ("A", causes[1])))

        assert self.store.count() == 1
        assert self.store.checkpoint() == at(1)
        assert self.tracker.known is known_before
        assert self.tracker.known.keys() == ["B"]

    def test_same_time_snapshot_is_persistence_error(self):
        self.tracker.observe(at(1), _outages(("A", "Trees")))
        a_id = self.tracker.known.get("A").id

        with pytest.raises(PersistenceError):
            self.tracker.observe(at(1), _outages(("A", "Wind")))

        assert _kinds(self.store, a_id) == [EventKind.INITIAL]
        assert self.tracker.known.get("A").outage.desc.cause == "Trees"

    def test_earlier_snapshot_is_persistence_error(self):
        self.tracker.observe(at(2), _outages(("A", "Trees")))

        with pytest.raises(PersistenceError):
            self.tracker.observe(at(1), [])

        assert self.store.checkpoint() == at(2)
        assert self.tracker.known.keys() == ["A"]

    def test_lifecycle_ordering(self):
        rng = random.Random(7)
        keys = ["A", "B", "C", "D", "E"]
        for minute in range(1, 30):
            present = [k for k in keys if rng.random() < 0.6]
            self.tracker.observe(at(minute), _outages(*[(k, "Trees") for k in present]))

        for summary in self.store.summaries():
            events = self.store.tracking_events(summary.id)
            times = [e.observed_at for e in events]
            assert times == sorted(times) and len(set(times)) == len(times)
            assert events[0].kind == EventKind.INITIAL
            missing = [i for i, e in enumerate(events) if e.kind == EventKind.MISSING]
            assert missing in ([], [len(events) - 1])
            assert summary == replay_summary(summary.id, self.store.events(summary.id))

    def test_order_within_snapshot_does_not_matter(self):
        snapshots = [
            _outages(("A", "Trees"), ("B", "Wind"), ("C", "Ice")),
            _outages(("C", "Ice"), ("A", "Trees"), ("D", "Wind")),
            _outages(("D", "Wind"), ("B", "Trees")),
        ]
        other_store = OutageStore(":memory:")
        other_store.init()
        other = OutageTracker(other_store)

        for minute, outages in enumerate(snapshots, start=1):
            self.tracker.observe(at(minute), outages)
            other.observe(at(minute), list(reversed(outages)))

        def history(store):
            return sorted(
                (r["geom_p"], r["observed_at"], r["event_name"], r["cause"])
                for s in store.summaries()
                for r in store.events(s.id)
            )

        assert history(self.store) == history(other_store)

    def test_load_state_resumes_known_table(self):
        self.tracker.observe(at(1), _outages(("A", "Trees"), ("B", "Wind")))
        self.tracker.observe(at(2), _outages(("A", "Trees")))

        resumed = OutageTracker(self.store)
        assert resumed.load_state() == 1
        a_id = resumed.known.get("A").id

        result = resumed.observe(at(3), _outages(("A", "Trees"), ("B", "Wind")))
        assert (result.initial, result.updated, result.missing) == (1, 1, 0)
        assert resumed.known.get("A").id == a_id
        assert _kinds(self.store, a_id) == [EventKind.INITIAL, EventKind.UPDATE, EventKind.UPDATE]

    def test_known_tables_are_independent(self):
        other = OutageTracker(self.store)
        self.tracker.observe(at(1), _outages(("A", "Trees")))
        assert len(other.known) == 0

    def test_keeps_given_empty_table(self):
        table = KnownTable()
        tracker = OutageTracker(self.store, known=table)
        assert tracker.known is table


class TestObservationAtomicity:
    def test_failure_mid_snapshot_persists_nothing(self):
        store = FailingStore(fail_after=2)
        store.init()
        tracker = OutageTracker(store)
        tracker.observe(at(1), _outages(("A", "Trees")))
        known_before = tracker.known

        store.emitted = 0
        store.armed = True
        with pytest.raises(PersistenceError):
            tracker.observe(at(2), _outages(("A", "Trees"), ("B", "Wind"), ("C", "Ice")))

        assert store.checkpoint() == at(1)
        assert store.count() == 1
        assert tracker.known is known_before
        assert tracker.known.keys() == ["A"]

    def test_tracker_usable_after_failure(self):
        store = FailingStore(fail_after=0)
        store.init()
        tracker = OutageTracker(store)

        store.armed = True
        with pytest.raises(PersistenceError):
            tracker.observe(at(1), _outages(("A", "Trees")))

        store.armed = False
        result = tracker.observe(at(1), _outages(("A", "Trees")))
        assert result.initial == 1
        assert store.checkpoint() == at(1)
