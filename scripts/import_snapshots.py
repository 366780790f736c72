"""
Import historical snapshots from a CSV file.

Expected columns: timestamp (ISO-8601 or epoch millis), total_usd and
optionally total_secondary. Rows without total_secondary use SECONDARY_RATE.
"""
from pathlib import Path
import argparse
import os
import sys

import pandas as pd

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from cryptohub.config import settings
from cryptohub.db import Database, migrate
from cryptohub.logging import setup_logging
from cryptohub.pipeline.snapshots import SnapshotStore


def _to_ms(series: pd.Series) -> pd.Series:
    numeric = pd.to_numeric(series, errors="coerce")
    if numeric.notna().all():
        return numeric.astype("int64")
    dt = pd.to_datetime(series, utc=True)
    return ((dt - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1)).astype("int64")


def load_rows(csv_path: str, secondary_rate: float) -> list[dict]:
    df = pd.read_csv(csv_path)
    missing = {"timestamp", "total_usd"} - set(df.columns)
    if missing:
        raise ValueError(f"missing columns: {', '.join(sorted(missing))}")
    df = df.dropna(subset=["timestamp", "total_usd"])
    df["timestamp_ms"] = _to_ms(df["timestamp"])
    df["total_primary"] = pd.to_numeric(df["total_usd"], errors="coerce")
    if "total_secondary" in df.columns:
        df["total_secondary"] = pd.to_numeric(df["total_secondary"], errors="coerce")
    else:
        df["total_secondary"] = float("nan")
    df["total_secondary"] = df["total_secondary"].fillna(df["total_primary"] * secondary_rate)
    df = df.dropna(subset=["total_primary"]).sort_values("timestamp_ms")
    return df[["timestamp_ms", "total_primary", "total_secondary"]].to_dict(orient="records")


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description="Bulk import historical portfolio snapshots.")
    parser.add_argument("csv_path")
    parser.add_argument("--user-id", default=settings.default_user_id)
    args = parser.parse_args()
    if not args.user_id:
        parser.error("--user-id is required (or set DEFAULT_USER_ID)")
    setup_logging()
    db = Database(settings.db_path)
    migrate(db.conn)
    rows = load_rows(args.csv_path, settings.secondary_rate)
    created = SnapshotStore(db).import_snapshots(args.user_id, rows)
    print('Imported', len(created), 'snapshots for', args.user_id)
