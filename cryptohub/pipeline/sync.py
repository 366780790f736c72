from __future__ import annotations

import asyncio
from typing import Protocol

import structlog

from ..config import settings
from ..db import Database
from ..errors import AuthorizationFailure
from ..security.cipher import SecretCipher
from .exchanges import decrypt_for_request, list_active_exchanges
from .valuation import ValuationResult

log = structlog.get_logger()


class ValuationSource(Protocol):
    async def fetch_balances(self, exchanges: list[dict]) -> ValuationResult: ...


class SyncCoordinator:
    """
    Single-flight wrapper around the remote balance aggregation.

    While a refresh is in flight every ``sync_now`` caller, for any user,
    awaits that same task and gets the same result or the same exception.
    A failure that is not an authorization failure schedules one detached
    retry after ``retry_delay_seconds``; its outcome is only logged.
    """

    def __init__(
        self,
        db: Database,
        source: ValuationSource,
        cipher: SecretCipher | None = None,
        retry_delay_seconds: float | None = None,
    ):
        self.db = db
        self.source = source
        self.cipher = cipher
        self.retry_delay_seconds = settings.sync_retry_delay_seconds if retry_delay_seconds is None else retry_delay_seconds
        self._pending: asyncio.Task | None = None
        self._retries: set[asyncio.Task] = set()

    @property
    def is_syncing(self) -> bool:
        return self._pending is not None

    async def sync_now(self, user_id: str) -> ValuationResult | None:
        return await self._sync(user_id, allow_retry=True)

    async def _sync(self, user_id: str, allow_retry: bool) -> ValuationResult | None:
        if self._pending is None:
            self._pending = asyncio.create_task(self._run(user_id, allow_retry))
        else:
            log.debug("sync_joined_inflight", user_id=user_id)
        # Shield so one caller being cancelled does not abort the shared call.
        return await asyncio.shield(self._pending)

    async def _run(self, user_id: str, allow_retry: bool) -> ValuationResult | None:
        try:
            log.info("sync_started", user_id=user_id)
            exchanges = list_active_exchanges(self.db, user_id)
            if not exchanges:
                log.info("sync_no_active_exchanges", user_id=user_id)
                return None
            payload = decrypt_for_request(exchanges, user_id, self.cipher)
            if not payload:
                log.error("sync_no_valid_exchanges", user_id=user_id, exchanges=len(exchanges))
                return None
            result = await self.source.fetch_balances(payload)
            log.info(
                "sync_finished",
                user_id=user_id,
                total_primary=result.total_primary,
                exchanges_ok=result.exchanges_ok,
                exchanges_failed=len(result.exchanges_failed),
            )
            return result
        except Exception as e:
            log.error("sync_failed", user_id=user_id, err=str(e), err_type=type(e).__name__)
            if allow_retry and not isinstance(e, AuthorizationFailure):
                self._schedule_retry(user_id)
            raise
        finally:
            self._pending = None

    def _schedule_retry(self, user_id: str):
        log.info("sync_retry_scheduled", user_id=user_id, delay_seconds=self.retry_delay_seconds)
        task = asyncio.create_task(self._retry_later(user_id))
        self._retries.add(task)
        task.add_done_callback(self._retries.discard)

    async def _retry_later(self, user_id: str):
        await asyncio.sleep(self.retry_delay_seconds)
        try:
            await self._sync(user_id, allow_retry=False)
        except Exception as e:
            log.warning("sync_retry_failed", user_id=user_id, err=str(e))

    async def aclose(self):
        """Cancel pending background retries (in-flight syncs run to completion)."""
        for task in list(self._retries):
            task.cancel()
        if self._retries:
            await asyncio.gather(*self._retries, return_exceptions=True)
