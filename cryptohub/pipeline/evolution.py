from __future__ import annotations

from typing import Callable

from ..utils import DAY_MS, ms_to_iso
from .snapshots import Snapshot, SnapshotStore


def _empty() -> dict:
    return {"values": [], "values_secondary": [], "timestamps": []}


def _bracket(snapshots: list[Snapshot], target: float):
    before = None
    after = None
    for snap in snapshots:
        if snap.timestamp_ms <= target and (before is None or snap.timestamp_ms > before.timestamp_ms):
            before = snap
        if snap.timestamp_ms >= target and (after is None or snap.timestamp_ms < after.timestamp_ms):
            after = snap
    return before, after


def _value_at(snapshots: list[Snapshot], target: float, attr: str) -> float:
    before, after = _bracket(snapshots, target)
    if before is not None and after is not None and before.id != after.id:
        b = getattr(before, attr)
        a = getattr(after, attr)
        ratio = (target - before.timestamp_ms) / (after.timestamp_ms - before.timestamp_ms)
        return b + (a - b) * ratio
    if before is not None:
        return getattr(before, attr)
    if after is not None:
        return getattr(after, attr)
    return getattr(snapshots[0], attr)


def build_series(snapshots: list[Snapshot], start_ms: int, end_ms: int, points: int) -> dict:
    """
    Chart series with exactly ``points`` entries over ``[start_ms, end_ms]``.

    ``snapshots`` must be ascending. When there are at least ``points`` of
    them they are returned as-is. Otherwise targets are spaced evenly and
    each value is linearly interpolated between the closest snapshots on
    either side, or copied from the only side that exists.
    """
    if not snapshots or points < 1:
        return _empty()
    if len(snapshots) >= points:
        return {
            "values": [s.total_primary for s in snapshots],
            "values_secondary": [s.total_secondary for s in snapshots],
            "timestamps": [ms_to_iso(s.timestamp_ms) for s in snapshots],
        }
    if points == 1:
        targets = [float(end_ms)]
    else:
        interval = (end_ms - start_ms) / (points - 1)
        targets = [start_ms + i * interval for i in range(points)]
    return {
        "values": [_value_at(snapshots, t, "total_primary") for t in targets],
        "values_secondary": [_value_at(snapshots, t, "total_secondary") for t in targets],
        "timestamps": [ms_to_iso(t) for t in targets],
    }


class EvolutionInterpolator:
    def __init__(self, store: SnapshotStore, clock: Callable[[], int] | None = None):
        self.store = store
        self.clock = clock or store.clock

    def get_evolution_series(self, user_id: str, days: int = 7) -> dict:
        if days < 1:
            return _empty()
        end = self.clock()
        start = end - days * DAY_MS
        snapshots = self.store.get_in_range(user_id, start, end)
        return build_series(snapshots, start, end, days)
