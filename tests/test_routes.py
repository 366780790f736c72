import os
import tempfile
import unittest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from cryptohub.api.routes import router
from cryptohub.db import Database, migrate
from cryptohub.errors import AuthorizationFailure
from cryptohub.pipeline.exchanges import add_exchange
from cryptohub.pipeline.valuation import ValuationResult
from cryptohub.runtime import build_core
from cryptohub.utils import DAY_MS, now_ms


class FakeSource:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    async def fetch_balances(self, exchanges):
        if self.error is not None:
            raise self.error
        return self.result


def _database(test):
    tmp = tempfile.TemporaryDirectory()
    test.addCleanup(tmp.cleanup)
    db = Database(os.path.join(tmp.name, "cryptohub.db"))
    test.addCleanup(db.close)
    migrate(db.conn)
    return db



def _client(test, source=None):
    core = build_core(db=_database(test), source=source or FakeSource(ValuationResult(total_primary=0.0)))
    app = FastAPI()
    app.include_router(router)
    app.state.core = core
    return TestClient(app), core


class SnapshotRoutesTests(unittest.TestCase):
    def test_health(self):
        client, _ = _client(self)
        r = client.get("/health")
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.json()["ok"])
        self.assertFalse(r.json()["scheduler"]["is_running"])

    def test_create_and_read_back(self):
        client, _ = _client(self)
        r = client.post("/users/u1/snapshots", json={"total_primary": 1200.5, "total_secondary": 6602.75})
        self.assertEqual(r.status_code, 201)
        created = r.json()
        latest = client.get("/users/u1/snapshots/latest").json()
        self.assertEqual(latest, created)
        self.assertEqual(len(client.get("/users/u1/snapshots").json()), 1)

    def test_negative_totals_rejected(self):
        client, _ = _client(self)
        r = client.post("/users/u1/snapshots", json={"total_primary": -1, "total_secondary": 0})
        self.assertEqual(r.status_code, 422)

    def test_latest_missing(self):
        client, _ = _client(self)
        self.assertEqual(client.get("/users/u1/snapshots/latest").status_code, 404)
        self.assertEqual(client.get("/users/u1/stats").status_code, 404)

    def test_import(self):
        client, core = _client(self)
        now = now_ms()
        bad = client.post("/users/u1/snapshots/import", json={"snapshots": [{"total_primary": 1, "total_secondary": 5}]})
        self.assertEqual(bad.status_code, 400)
        ok = client.post(
            "/users/u1/snapshots/import",
            json={
                "snapshots": [
                    {"total_primary": 100, "total_secondary": 550, "timestamp_ms": now - 2 * DAY_MS},
                    {"total_primary": 110, "total_secondary": 605, "timestamp_ms": now - DAY_MS},
                ]
            },
        )
        self.assertEqual(ok.json(), {"ok": True, "imported": 2})
        self.assertEqual(core.store.count("u1"), 2)

    def test_delete_and_export(self):
        client, core = _client(self)
        core.store.create_snapshot("u1", 10.0, 55.0)
        csv = client.get("/users/u1/snapshots/export.csv")
        self.assertEqual(csv.status_code, 200)
        self.assertTrue(csv.headers["content-type"].startswith("text/csv"))
        self.assertEqual(len(csv.text.splitlines()), 2)
        self.assertEqual(client.delete("/users/u1/snapshots").json(), {"ok": True, "deleted": 1})


class AnalyticsRoutesTests(unittest.TestCase):
    def test_evolution(self):
        client, core = _client(self)
        core.store.create_snapshot("u1", 100.0, 550.0, now_ms() - DAY_MS)
        body = client.get("/users/u1/evolution", params={"days": 7}).json()
        self.assertEqual(body["days"], 7)
        self.assertEqual(body["values"], [100.0] * 7)
        self.assertEqual(len(body["timestamps"]), 7)
        self.assertEqual(client.get("/users/u1/evolution", params={"days": 0}).status_code, 400)
        self.assertEqual(client.get("/users/u1/evolution", params={"days": 366}).status_code, 400)

    def test_pnl(self):
        client, core = _client(self)
        core.store.create_snapshot("u1", 400.0, 0.0, now_ms() - 7 * DAY_MS)
        body = client.get("/users/u1/pnl", params={"current_value": 500}).json()
        self.assertEqual(body["current_balance"], 500.0)
        self.assertEqual(body["week"]["previous"], 400.0)
        self.assertAlmostEqual(body["week"]["change_percent"], 25.0)
        self.assertEqual(body["month"]["change"], 0.0)

    def test_chart_and_stats(self):
        client, core = _client(self)
        core.store.create_snapshot("u1", 100.0, 550.0)
        self.assertEqual(len(client.get("/users/u1/chart").json()), 1)
        self.assertEqual(client.get("/users/u1/stats").json()["today_total"], 100.0)


class SyncRoutesTests(unittest.TestCase):
    def test_no_exchanges(self):
        client, _ = _client(self)
        body = client.post("/users/u1/sync").json()
        self.assertEqual(body["synced"], False)
        self.assertIsNone(body["total_primary"])

    def test_synced(self):
        client, core = _client(self, FakeSource(ValuationResult(total_primary=321.0, exchanges_ok=1)))
        add_exchange(core.db, "u1", "binance", "Main", "k", "s", cipher=core.cipher)
        body = client.post("/users/u1/sync").json()
        self.assertTrue(body["synced"])
        self.assertEqual(body["total_primary"], 321.0)
        self.assertEqual(body["exchanges_ok"], 1)

    def test_authorization_failure(self):
        client, core = _client(self, FakeSource(error=AuthorizationFailure("bad key", status_code=401)))
        add_exchange(core.db, "u1", "binance", "Main", "k", "s", cipher=core.cipher)
        r = client.post("/users/u1/sync")
        self.assertEqual(r.status_code, 401)
        self.assertEqual(r.json()["detail"], "bad key")

    def test_scheduler_state(self):
        client, _ = _client(self)
        body = client.get("/scheduler/state").json()
        self.assertEqual(body["retry_count"], 0)
        self.assertIsNone(body["last_error"])


if __name__ == "__main__":
    unittest.main()
