import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path

def get_conn(db_path: str) -> sqlite3.Connection:
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None, check_same_thread=False)  # autocommit
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn

class Database:
    """
    File-backed sqlite database shared by the event loop and the API threadpool.

    Each thread reads through its own autocommit connection, so under WAL a
    read only ever sees committed data. Every write transaction opens a
    fresh connection with ``BEGIN IMMEDIATE`` and closes it afterwards.
    """

    def __init__(self, path: str):
        self.path = path
        self._local = threading.local()
        self._readers: list[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()

    @property
    def conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = get_conn(self.path)
            self._local.conn = conn
            with self._readers_lock:
                self._readers.append(conn)
        return conn

    @contextmanager
    def transaction(self):
        conn = get_conn(self.path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

    def close(self):
        with self._readers_lock:
            readers, self._readers = self._readers, []
        for conn in readers:
            conn.close()
        self._local = threading.local()


DDL = [
    # Portfolio valuations (insert-only; pruned by retention)
    """
CREATE TABLE IF NOT EXISTS balance_snapshots (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  total_primary REAL NOT NULL,
  total_secondary REAL NOT NULL,
  timestamp_ms INTEGER NOT NULL,
  created_at_utc TEXT NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS ix_balance_snapshots_user_ts ON balance_snapshots(user_id, timestamp_ms);",

    # Per-asset breakdown recorded next to scheduled snapshots
    """
CREATE TABLE IF NOT EXISTS balance_history (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id TEXT NOT NULL,
  exchange_name TEXT NOT NULL,
  symbol TEXT NOT NULL,
  amount REAL,
  usd_value REAL,
  secondary_value REAL,
  change_24h REAL,
  timestamp_ms INTEGER NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS ix_balance_history_user_ts ON balance_history(user_id, timestamp_ms);",

    # Connected exchanges; credentials stored encrypted
    """
CREATE TABLE IF NOT EXISTS user_exchanges (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  exchange_type TEXT NOT NULL,   -- ccxt id: binance, bybit, okx ...
  exchange_name TEXT NOT NULL,
  api_key_encrypted TEXT NOT NULL,
  api_secret_encrypted TEXT NOT NULL,
  api_passphrase_encrypted TEXT,
  is_active INTEGER NOT NULL DEFAULT 1,
  last_sync_at_ms INTEGER,
  created_at_ms INTEGER NOT NULL,
  updated_at_ms INTEGER NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS ix_user_exchanges_user_active ON user_exchanges(user_id, is_active);",
]

def migrate(conn: sqlite3.Connection):
    cur = conn.cursor()
    for stmt in DDL:
        cur.execute(stmt)
    cols = {row[1] for row in cur.execute("PRAGMA table_info(balance_history)").fetchall()}
    if cols:
        if "secondary_value" not in cols:
            cur.execute("ALTER TABLE balance_history ADD COLUMN secondary_value REAL")
        if "change_24h" not in cols:
            cur.execute("ALTER TABLE balance_history ADD COLUMN change_24h REAL")
    conn.commit()
