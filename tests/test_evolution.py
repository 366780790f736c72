import os
import tempfile
import unittest
from datetime import datetime, timezone

from cryptohub.db import Database, migrate
from cryptohub.pipeline.evolution import EvolutionInterpolator, build_series
from cryptohub.pipeline.snapshots import SnapshotStore
from cryptohub.utils import DAY_MS, ms_to_iso

NOW = int(datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc).timestamp() * 1000)
START = NOW - 7 * DAY_MS
STEP = 7 * DAY_MS // 6


def _database(test):
    tmp = tempfile.TemporaryDirectory()
    test.addCleanup(tmp.cleanup)
    db = Database(os.path.join(tmp.name, "cryptohub.db"))
    test.addCleanup(db.close)
    migrate(db.conn)
    return db


def _setup(test):
    store = SnapshotStore(_database(test), clock=lambda: NOW, local_tz="UTC")
    return store, EvolutionInterpolator(store)


class EvolutionSeriesTests(unittest.TestCase):
    def test_empty_history(self):
        _, evo = _setup(self)
        self.assertEqual(evo.get_evolution_series("u1", 7), {"values": [], "values_secondary": [], "timestamps": []})

    def test_snapshots_outside_window_are_ignored(self):
        store, evo = _setup(self)
        store.create_snapshot("u1", 100.0, 0.0, NOW - 8 * DAY_MS)
        self.assertEqual(evo.get_evolution_series("u1", 7)["values"], [])

    def test_sparse_history_fills_every_point(self):
        for count in (1, 3):
            with self.subTest(count=count):
                store, evo = _setup(self)
                for i in range(count):
                    store.create_snapshot("u1", 100.0 + i, 550.0, NOW - (i + 1) * DAY_MS)
                series = evo.get_evolution_series("u1", 7)
                self.assertEqual(len(series["values"]), 7)
                self.assertEqual(len(series["values_secondary"]), 7)
                self.assertEqual(len(series["timestamps"]), 7)

    def test_single_snapshot_is_flat(self):
        store, evo = _setup(self)
        store.create_snapshot("u1", 250.0, 1375.0, NOW - 3 * DAY_MS)
        series = evo.get_evolution_series("u1", 7)
        self.assertEqual(series["values"], [250.0] * 7)
        self.assertEqual(series["values_secondary"], [1375.0] * 7)

    def test_linear_interpolation_and_edges(self):
        store, evo = _setup(self)
        store.create_snapshot("u1", 100.0, 500.0, START + 2 * STEP)
        store.create_snapshot("u1", 400.0, 2000.0, START + 5 * STEP)
        series = evo.get_evolution_series("u1", 7)
        expected = [100.0, 100.0, 100.0, 200.0, 300.0, 400.0, 400.0]
        for got, want in zip(series["values"], expected):
            self.assertAlmostEqual(got, want)
        self.assertAlmostEqual(series["values_secondary"][4], 1500.0)

    def test_timestamps_span_the_window(self):
        store, evo = _setup(self)
        store.create_snapshot("u1", 1.0, 0.0, NOW - DAY_MS)
        ts = evo.get_evolution_series("u1", 7)["timestamps"]
        self.assertEqual(ts[0], ms_to_iso(START))
        self.assertEqual(ts[-1], ms_to_iso(NOW))
        self.assertEqual(ts[1], ms_to_iso(START + STEP))
        self.assertTrue(all(t.endswith("Z") for t in ts))

    def test_dense_history_is_returned_as_is(self):
        store, evo = _setup(self)
        for i in range(10):
            store.create_snapshot("u1", float(i), 0.0, START + (i + 1) * (DAY_MS // 2))
        series = evo.get_evolution_series("u1", 7)
        self.assertEqual(series["values"], [float(i) for i in range(10)])

    def test_single_day_series(self):
        store, evo = _setup(self)
        store.create_snapshot("u1", 80.0, 0.0, NOW - DAY_MS // 2)
        series = evo.get_evolution_series("u1", 1)
        self.assertEqual(series["values"], [80.0])
        self.assertEqual(series["timestamps"], [ms_to_iso(NOW)])

    def test_non_positive_days(self):
        store, evo = _setup(self)
        store.create_snapshot("u1", 80.0, 0.0, NOW)
        self.assertEqual(evo.get_evolution_series("u1", 0)["values"], [])


class BuildSeriesTests(unittest.TestCase):
    def test_no_points_requested(self):
        self.assertEqual(build_series([], 0, 10, 5)["timestamps"], [])


if __name__ == "__main__":
    unittest.main()
