from __future__ import annotations

import pandas as pd

from ..config import settings
from ..utils import DAY_MS
from .snapshots import Snapshot, SnapshotStore


def _frame(snapshots: list[Snapshot]) -> pd.DataFrame:
    df = pd.DataFrame(
        [(s.timestamp_ms, s.total_primary, s.total_secondary) for s in snapshots],
        columns=["timestamp_ms", "total_primary", "total_secondary"],
    )
    # Stable sort keeps insertion order for duplicate timestamps.
    df = df.sort_values("timestamp_ms", kind="stable").reset_index(drop=True)
    df["dt"] = pd.to_datetime(df["timestamp_ms"], unit="ms", utc=True)
    return df


def _total_at_or_before(store: SnapshotStore, user_id: str, end_ms: int):
    rows = store.list_snapshots(user_id, end_ms=end_ms, limit=1)
    return rows[0].total_primary if rows else None


def get_stats(store: SnapshotStore, user_id: str) -> dict | None:
    latest = store.get_latest(user_id)
    if latest is None:
        return None
    now = store.clock()
    today_total = latest.total_primary
    yesterday_total = _total_at_or_before(store, user_id, now - DAY_MS) or today_total
    week_total = _total_at_or_before(store, user_id, now - 7 * DAY_MS) or today_total
    month_total = _total_at_or_before(store, user_id, now - 30 * DAY_MS) or today_total

    daily_change = today_total - yesterday_total
    values = [s.total_primary for s in store.list_snapshots(user_id)]
    return {
        "today_total": today_total,
        "yesterday_total": yesterday_total,
        "daily_change": daily_change,
        "daily_change_percent": daily_change / yesterday_total * 100 if yesterday_total > 0 else 0.0,
        "weekly_change": today_total - week_total,
        "monthly_change": today_total - month_total,
        "all_time_high": max([today_total, *values]),
        "all_time_low": min([today_total, *values]),
    }


def get_chart_data(store: SnapshotStore, user_id: str, days: int = 30) -> list[dict]:
    """Last snapshot of each UTC day in the window, oldest day first."""
    start = store.clock() - days * DAY_MS
    snapshots = store.list_snapshots(user_id, start_ms=start)
    if not snapshots:
        return []
    df = _frame(snapshots)
    df["date"] = df["dt"].dt.strftime("%Y-%m-%d")
    daily = df.groupby("date", sort=True).tail(1).sort_values("date")
    return [
        {"date": row.date, "total_primary": float(row.total_primary), "total_secondary": float(row.total_secondary)}
        for row in daily.itertuples(index=False)
    ]


def export_csv(store: SnapshotStore, user_id: str, local_tz: str | None = None) -> str:
    primary = "Total USD"
    secondary = f"Total {settings.secondary_currency}"
    snapshots = store.list_snapshots(user_id)
    if not snapshots:
        return pd.DataFrame(columns=["Date", "Time", primary, secondary]).to_csv(index=False)
    df = _frame(snapshots)
    local = df["dt"].dt.tz_convert(local_tz or store.local_tz)
    out = pd.DataFrame(
        {
            "Date": local.dt.strftime("%Y-%m-%d"),
            "Time": local.dt.strftime("%H:%M:%S"),
            primary: df["total_primary"].map(lambda v: f"{v:.2f}"),
            secondary: df["total_secondary"].map(lambda v: f"{v:.2f}"),
        }
    )
    return out.to_csv(index=False)
