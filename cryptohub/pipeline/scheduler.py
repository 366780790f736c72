from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass
from typing import Callable

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from zoneinfo import ZoneInfo

from ..config import settings
from ..db import Database
from ..utils import ms_to_iso, next_local_midnight_ms, now_ms
from .exchanges import list_active_exchanges, touch_last_sync
from .snapshots import SnapshotStore
from .sync import SyncCoordinator

log = structlog.get_logger()

JOB_ID = "daily_snapshot_check"


@dataclass
class SchedulerState:
    is_running: bool = False
    last_snapshot_at: int | None = None
    next_run_at: int | None = None
    retry_count: int = 0
    last_error: str | None = None


class DailySnapshotScheduler:
    """
    Takes one portfolio snapshot per local day, shortly after midnight.

    A check runs every ``check_interval_seconds``; once ``next_run_at`` has
    passed it launches the daily routine as its own task. The routine makes
    up to ``max_retries`` attempts with ``retry_delay_seconds`` between them.
    Checks keep firing during the waits and skip while ``is_running`` is set.
    """

    def __init__(
        self,
        db: Database,
        store: SnapshotStore,
        coordinator: SyncCoordinator,
        clock: Callable[[], int] = now_ms,
        local_tz: str | None = None,
        max_retries: int | None = None,
        retry_delay_seconds: float | None = None,
        check_interval_seconds: int | None = None,
        secondary_rate: float | None = None,
        retention_days: int | None = None,
    ):
        self.db = db
        self.store = store
        self.coordinator = coordinator
        self.clock = clock
        self.local_tz = local_tz or settings.local_tz
        self.max_retries = settings.scheduler_max_retries if max_retries is None else max_retries
        self.retry_delay_seconds = settings.scheduler_retry_delay_seconds if retry_delay_seconds is None else retry_delay_seconds
        self.check_interval_seconds = settings.scheduler_check_interval_seconds if check_interval_seconds is None else check_interval_seconds
        self.secondary_rate = settings.secondary_rate if secondary_rate is None else secondary_rate
        self.retention_days = settings.snapshot_retention_days if retention_days is None else retention_days
        self.state = SchedulerState()
        self._scheduler: AsyncIOScheduler | None = None
        self._user_id: str | None = None
        self._attempt: asyncio.Task | None = None

    @property
    def started(self) -> bool:
        return self._scheduler is not None

    def _next_midnight(self) -> int:
        return next_local_midnight_ms(self.clock(), self.local_tz)

    def start(self, user_id: str):
        if self._scheduler is not None:
            log.warning("scheduler_already_running", user_id=self._user_id)
            return
        self._user_id = user_id
        self.state.next_run_at = self._next_midnight()
        sched = AsyncIOScheduler(timezone=ZoneInfo(self.local_tz))
        sched.add_job(
            self._check,
            IntervalTrigger(seconds=self.check_interval_seconds),
            args=[user_id],
            id=JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        sched.start()
        self._scheduler = sched
        log.info("scheduler_started", user_id=user_id, next_run_at=ms_to_iso(self.state.next_run_at))

    def stop(self, user_id: str | None = None):
        """Cancel future checks. An attempt already underway runs to completion."""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        log.info("scheduler_stopped", user_id=user_id or self._user_id)
        self._user_id = None
        self.state = SchedulerState(is_running=self.state.is_running)

    def get_state(self) -> SchedulerState:
        return dataclasses.replace(self.state)

    async def _check(self, user_id: str) -> asyncio.Task | None:
        if self.state.is_running:
            return None
        if self.state.next_run_at is not None and self.clock() < self.state.next_run_at:
            return None
        log.info("scheduler_daily_due", user_id=user_id)
        # Flag before spawning so the next check cannot launch a second attempt.
        self.state.is_running = True
        self._attempt = asyncio.create_task(self._run_daily(user_id))
        return self._attempt

    async def force_snapshot(self, user_id: str):
        """Run the daily routine now, ignoring ``next_run_at``."""
        log.info("scheduler_force_snapshot", user_id=user_id)
        await self._run_daily(user_id)

    async def _run_daily(self, user_id: str):
        self.state.is_running = True
        self.state.retry_count = 0
        self.state.last_error = None
        try:
            while self.state.retry_count < self.max_retries:
                try:
                    log.info("scheduler_attempt", user_id=user_id, attempt=self.state.retry_count + 1, max_retries=self.max_retries)
                    await self._attempt_once(user_id)
                    return
                except Exception as e:
                    self.state.retry_count += 1
                    self.state.last_error = str(e) or type(e).__name__
                    log.error(
                        "scheduler_attempt_failed",
                        user_id=user_id,
                        attempt=self.state.retry_count,
                        max_retries=self.max_retries,
                        err=self.state.last_error,
                    )
                    if self.state.retry_count < self.max_retries:
                        await asyncio.sleep(self.retry_delay_seconds)
            self.state.next_run_at = self._next_midnight()
            log.error(
                "scheduler_retries_exhausted",
                user_id=user_id,
                last_error=self.state.last_error,
                next_run_at=ms_to_iso(self.state.next_run_at),
            )
        finally:
            self.state.is_running = False

    async def _attempt_once(self, user_id: str):
        exchanges = list_active_exchanges(self.db, user_id)
        if not exchanges:
            log.info("scheduler_no_exchanges", user_id=user_id)
            self.state.next_run_at = self._next_midnight()
            return
        result = await self.coordinator.sync_now(user_id)
        if result is None:
            raise RuntimeError("balance response was empty")
        total_primary = float(result.total_primary)
        if result.total_secondary is not None:
            total_secondary = float(result.total_secondary)
        else:
            total_secondary = total_primary * self.secondary_rate
        ts = self.clock()
        snap = self.store.create_snapshot_with_holdings(user_id, total_primary, total_secondary, result, ts)
        self.state.last_snapshot_at = ts
        self.state.last_error = None
        self.state.next_run_at = self._next_midnight()
        log.info(
            "scheduler_snapshot_done",
            user_id=user_id,
            snapshot_id=snap.id,
            total_primary=total_primary,
            next_run_at=ms_to_iso(self.state.next_run_at),
        )
        # The snapshot is committed; housekeeping failures must not trigger another attempt.
        try:
            self.store.prune(user_id, self.retention_days)
        except Exception as e:
            log.error("scheduler_prune_failed", user_id=user_id, err=str(e))
        try:
            touch_last_sync(self.db, user_id, ts)
        except Exception as e:
            log.error("scheduler_touch_last_sync_failed", user_id=user_id, err=str(e))
