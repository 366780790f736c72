from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Callable

import structlog

from ..config import settings
from ..utils import DAY_MS, now_ms
from .snapshots import SnapshotStore
from .valuation import ValuationResult

log = structlog.get_logger()

PERIOD_DAYS = {
    "week": 7,
    "two_weeks": 15,
    "month": 30,
}


@dataclass
class PnLData:
    current: float
    previous: float
    change: float
    change_percent: float
    period: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PnLSummary:
    current_balance: float
    today: PnLData
    week: PnLData
    two_weeks: PnLData
    month: PnLData

    def to_dict(self) -> dict:
        return asdict(self)


def _zero(period: str, current: float = 0.0) -> PnLData:
    return PnLData(current=current, previous=current, change=0.0, change_percent=0.0, period=period)


def _pct(change: float, previous: float) -> float:
    return change / previous * 100 if previous != 0 else 0.0


def _compare(current: float, previous: float, period: str) -> PnLData:
    change = current - previous
    return PnLData(current=current, previous=previous, change=change, change_percent=_pct(change, previous), period=period)


def live_pnl(valuation: ValuationResult | None) -> PnLData:
    """24h PnL of the whole portfolio from per-asset 24h percentage changes.

    previous_total = sum(v / (1 + c/100)) over assets with a positive USD value.
    Assets with no known change, or a change of -100% or less, count at their
    current value.
    """
    if valuation is None or not valuation.assets:
        return _zero("today")
    current_total = float(valuation.total_primary or 0.0)
    if current_total == 0:
        return _zero("today")
    previous_total = 0.0
    for asset in valuation.assets:
        value = asset.usd_value or 0.0
        if value <= 0:
            continue
        c = asset.change_24h
        if c is None or 1 + c / 100 <= 0:
            previous_total += value
        else:
            previous_total += value / (1 + c / 100)
    return _compare(current_total, previous_total, "today")


class PnLCalculator:
    def __init__(self, store: SnapshotStore, clock: Callable[[], int] | None = None, window_days: int | None = None):
        self.store = store
        self.clock = clock or store.clock
        self.window_ms = (window_days or settings.pnl_window_days) * DAY_MS

    def _resolve_current(self, user_id: str, current_value: float | None) -> float:
        if current_value is not None:
            return float(current_value)
        latest = self.store.get_latest(user_id)
        return latest.total_primary if latest else 0.0

    def get_today_pnl(self, user_id: str, current_value: float | None = None, valuation: ValuationResult | None = None) -> PnLData:
        if valuation is not None and valuation.has_live_changes:
            return live_pnl(valuation)
        current = self._resolve_current(user_id, current_value)
        if current == 0:
            return _zero("today")
        prev = self.store.get_nearest(user_id, self.clock() - DAY_MS, DAY_MS)
        if prev is None:
            return _zero("today", current)
        return _compare(current, prev.total_primary, "today")

    def _period_pnl(self, user_id: str, days_ago: int, period: str, current_value: float | None) -> PnLData:
        current = self._resolve_current(user_id, current_value)
        if current == 0:
            return _zero(period)
        target = self.clock() - days_ago * DAY_MS
        prev = self.store.get_nearest(user_id, target, self.window_ms)
        if prev is None:
            return _zero(period, current)
        return _compare(current, prev.total_primary, period)

    def get_week_pnl(self, user_id: str, current_value: float | None = None) -> PnLData:
        return self._period_pnl(user_id, PERIOD_DAYS["week"], "week", current_value)

    def get_two_weeks_pnl(self, user_id: str, current_value: float | None = None) -> PnLData:
        return self._period_pnl(user_id, PERIOD_DAYS["two_weeks"], "two_weeks", current_value)

    def get_month_pnl(self, user_id: str, current_value: float | None = None) -> PnLData:
        return self._period_pnl(user_id, PERIOD_DAYS["month"], "month", current_value)

    def get_summary(self, user_id: str, current_value: float | None = None, valuation: ValuationResult | None = None) -> PnLSummary:
        current = self._resolve_current(user_id, current_value)
        if current == 0:
            return PnLSummary(
                current_balance=0.0,
                today=_zero("today"),
                week=_zero("week"),
                two_weeks=_zero("two_weeks"),
                month=_zero("month"),
            )
        summary = PnLSummary(
            current_balance=current,
            today=self.get_today_pnl(user_id, current, valuation),
            week=self.get_week_pnl(user_id, current),
            two_weeks=self.get_two_weeks_pnl(user_id, current),
            month=self.get_month_pnl(user_id, current),
        )
        log.debug("pnl_summary", user_id=user_id, current=current, today_change=summary.today.change)
        return summary
