from __future__ import annotations

import sqlite3
import threading
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterable

import structlog

from ..config import settings
from ..db import Database
from ..utils import DAY_MS, now_ms, now_utc_iso, start_of_local_day_ms
from .valuation import ValuationResult

log = structlog.get_logger()

_COLS = "id, user_id, total_primary, total_secondary, timestamp_ms, created_at_utc"


@dataclass(frozen=True)
class Snapshot:
    id: str
    user_id: str
    total_primary: float
    total_secondary: float
    timestamp_ms: int
    created_at: str


def _row_to_snapshot(row) -> Snapshot:
    return Snapshot(
        id=row[0],
        user_id=row[1],
        total_primary=float(row[2]),
        total_secondary=float(row[3]),
        timestamp_ms=int(row[4]),
        created_at=row[5],
    )


def nearest_snapshot(snapshots: Iterable[Snapshot], target_ms: int) -> Snapshot | None:
    """Closest snapshot to ``target_ms``; the first one seen wins on equal distance."""
    best = None
    best_diff = None
    for snap in snapshots:
        diff = abs(snap.timestamp_ms - target_ms)
        if best is None or diff < best_diff:
            best, best_diff = snap, diff
    return best


class SnapshotStore:
    """
    Time-series of portfolio valuations per user, backed by ``balance_snapshots``.

    Rows are never updated: only inserted, pruned by retention or deleted
    with the user's data. Writes for one user are serialized by a per-user
    lock and each runs in its own transaction on its own connection, so
    readers never observe a partial insert or import.
    """

    def __init__(self, db: Database, clock: Callable[[], int] = now_ms, local_tz: str | None = None):
        self.db = db
        self.clock = clock
        self.local_tz = local_tz or settings.local_tz
        self._locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[user_id]

    @contextmanager
    def _write(self, user_id: str):
        with self._user_lock(user_id), self.db.transaction() as conn:
            yield conn.cursor()

    def _insert(self, cur: sqlite3.Cursor, user_id: str, total_primary: float, total_secondary: float, timestamp_ms: int) -> Snapshot:
        snap = Snapshot(
            id=str(uuid.uuid4()),
            user_id=user_id,
            total_primary=float(total_primary),
            total_secondary=float(total_secondary),
            timestamp_ms=int(timestamp_ms),
            created_at=now_utc_iso(),
        )
        cur.execute(
            f"INSERT INTO balance_snapshots({_COLS}) VALUES(?,?,?,?,?,?)",
            (snap.id, snap.user_id, snap.total_primary, snap.total_secondary, snap.timestamp_ms, snap.created_at),
        )
        return snap

    def create_snapshot(self, user_id: str, total_primary: float, total_secondary: float, timestamp_ms: int | None = None) -> Snapshot:
        ts = self.clock() if timestamp_ms is None else timestamp_ms
        with self._write(user_id) as cur:
            snap = self._insert(cur, user_id, total_primary, total_secondary, ts)
        log.info("snapshot_created", user_id=user_id, snapshot_id=snap.id, total_primary=snap.total_primary, timestamp_ms=snap.timestamp_ms)
        return snap

    def import_snapshots(self, user_id: str, rows: Iterable[dict]) -> list[Snapshot]:
        """Bulk insert of historical rows (``total_primary``, ``total_secondary``, ``timestamp_ms``), all or nothing."""
        created: list[Snapshot] = []
        with self._write(user_id) as cur:
            for row in rows:
                created.append(
                    self._insert(
                        cur,
                        user_id,
                        row["total_primary"],
                        row.get("total_secondary", 0.0),
                        int(row["timestamp_ms"]),
                    )
                )
        log.info("snapshots_imported", user_id=user_id, count=len(created))
        return created

    def get_latest(self, user_id: str) -> Snapshot | None:
        row = self.db.conn.execute(
            f"SELECT {_COLS} FROM balance_snapshots WHERE user_id=? ORDER BY timestamp_ms DESC, rowid DESC LIMIT 1",
            (user_id,),
        ).fetchone()
        return _row_to_snapshot(row) if row else None

    def get_in_range(self, user_id: str, start_ms: int, end_ms: int) -> list[Snapshot]:
        rows = self.db.conn.execute(
            f"""
            SELECT {_COLS} FROM balance_snapshots
            WHERE user_id=? AND timestamp_ms>=? AND timestamp_ms<=?
            ORDER BY timestamp_ms ASC, rowid ASC
            """,
            (user_id, int(start_ms), int(end_ms)),
        ).fetchall()
        return [_row_to_snapshot(r) for r in rows]

    def get_nearest(self, user_id: str, target_ms: int, window_ms: int) -> Snapshot | None:
        candidates = self.get_in_range(user_id, target_ms - window_ms, target_ms + window_ms)
        return nearest_snapshot(candidates, target_ms)

    def get_today_snapshot(self, user_id: str) -> Snapshot | None:
        start = start_of_local_day_ms(self.clock(), self.local_tz)
        row = self.db.conn.execute(
            f"""
            SELECT {_COLS} FROM balance_snapshots
            WHERE user_id=? AND timestamp_ms>=?
            ORDER BY timestamp_ms DESC, rowid DESC LIMIT 1
            """,
            (user_id, start),
        ).fetchone()
        return _row_to_snapshot(row) if row else None

    def list_snapshots(self, user_id: str, start_ms: int | None = None, end_ms: int | None = None, limit: int | None = None) -> list[Snapshot]:
        """Newest first."""
        sql = f"SELECT {_COLS} FROM balance_snapshots WHERE user_id=?"
        params: list = [user_id]
        if start_ms is not None:
            sql += " AND timestamp_ms>=?"
            params.append(int(start_ms))
        if end_ms is not None:
            sql += " AND timestamp_ms<=?"
            params.append(int(end_ms))
        sql += " ORDER BY timestamp_ms DESC, rowid DESC"
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [_row_to_snapshot(r) for r in self.db.conn.execute(sql, params).fetchall()]

    def count(self, user_id: str) -> int:
        return self.db.conn.execute("SELECT COUNT(*) FROM balance_snapshots WHERE user_id=?", (user_id,)).fetchone()[0]

    def prune(self, user_id: str, retention_days: int = 365) -> int:
        cutoff = self.clock() - retention_days * DAY_MS
        with self._write(user_id) as cur:
            cur.execute("DELETE FROM balance_snapshots WHERE user_id=? AND timestamp_ms<?", (user_id, cutoff))
            deleted = cur.rowcount
            cur.execute("DELETE FROM balance_history WHERE user_id=? AND timestamp_ms<?", (user_id, cutoff))
        if deleted:
            log.info("snapshots_pruned", user_id=user_id, deleted=deleted, retention_days=retention_days)
        return deleted

    def delete_all(self, user_id: str) -> int:
        with self._write(user_id) as cur:
            cur.execute("DELETE FROM balance_snapshots WHERE user_id=?", (user_id,))
            deleted = cur.rowcount
            cur.execute("DELETE FROM balance_history WHERE user_id=?", (user_id,))
        log.info("snapshots_deleted", user_id=user_id, deleted=deleted)
        return deleted

    def _insert_holdings(self, cur: sqlite3.Cursor, user_id: str, valuation: ValuationResult, timestamp_ms: int) -> int:
        rows = [
            (user_id, a.exchange, a.symbol, a.amount, a.usd_value, a.secondary_value, a.change_24h, timestamp_ms)
            for a in valuation.assets
        ]
        if rows:
            cur.executemany(
                """
                INSERT INTO balance_history(
                  user_id, exchange_name, symbol, amount, usd_value, secondary_value, change_24h, timestamp_ms
                ) VALUES (?,?,?,?,?,?,?,?)
                """,
                rows,
            )
        return len(rows)

    def record_holdings(self, user_id: str, valuation: ValuationResult, timestamp_ms: int | None = None) -> int:
        ts = self.clock() if timestamp_ms is None else int(timestamp_ms)
        if not valuation.assets:
            return 0
        with self._write(user_id) as cur:
            return self._insert_holdings(cur, user_id, valuation, ts)

    def create_snapshot_with_holdings(
        self,
        user_id: str,
        total_primary: float,
        total_secondary: float,
        valuation: ValuationResult,
        timestamp_ms: int | None = None,
    ) -> Snapshot:
        """Snapshot plus its per-asset rows, committed together."""
        ts = self.clock() if timestamp_ms is None else int(timestamp_ms)
        with self._write(user_id) as cur:
            snap = self._insert(cur, user_id, total_primary, total_secondary, ts)
            holdings = self._insert_holdings(cur, user_id, valuation, ts)
        log.info("snapshot_created", user_id=user_id, snapshot_id=snap.id, total_primary=snap.total_primary, timestamp_ms=ts, holdings=holdings)
        return snap

    def get_holdings(self, user_id: str, timestamp_ms: int) -> list[dict]:
        rows = self.db.conn.execute(
            """
            SELECT exchange_name, symbol, amount, usd_value, secondary_value, change_24h
            FROM balance_history WHERE user_id=? AND timestamp_ms=?
            ORDER BY usd_value DESC
            """,
            (user_id, int(timestamp_ms)),
        ).fetchall()
        return [
            {
                "exchange": r[0],
                "symbol": r[1],
                "amount": r[2],
                "usd_value": r[3],
                "secondary_value": r[4],
                "change_24h": r[5],
            }
            for r in rows
        ]
