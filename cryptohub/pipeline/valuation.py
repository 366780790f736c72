from __future__ import annotations

from dataclasses import dataclass, field

import httpx
import structlog

from ..errors import AuthorizationFailure, TransientSyncFailure
from ..utils import coerce_float, now_ms

log = structlog.get_logger()

AUTH_STATUSES = {401, 403}


@dataclass
class AssetValuation:
    exchange: str
    symbol: str
    amount: float
    usd_value: float
    change_24h: float | None = None
    secondary_value: float | None = None


@dataclass
class ValuationResult:
    total_primary: float
    total_secondary: float | None = None
    assets: list[AssetValuation] = field(default_factory=list)
    exchanges_ok: int = 0
    exchanges_failed: list[str] = field(default_factory=list)
    fetched_at_ms: int | None = None

    @property
    def has_live_changes(self) -> bool:
        return any(a.change_24h is not None for a in self.assets)


def _total_from_payload(payload: dict):
    total = coerce_float(payload.get("total_usd"))
    if total is None:
        total = coerce_float((payload.get("summary") or {}).get("total_usd"))
    return total


def parse_balance_response(payload: dict) -> ValuationResult:
    """Normalize a ``/balances`` response into a ValuationResult.

    Accepts both the current shape (``total_usd`` at the root, ``balances``
    per exchange) and the legacy one (``summary.total_usd``). Exchanges with
    ``success: false`` are reported in ``exchanges_failed`` and skipped.
    """
    if not isinstance(payload, dict):
        raise TransientSyncFailure("balance_response_not_an_object")
    assets: list[AssetValuation] = []
    failed: list[str] = []
    ok = 0
    secondary_total = 0.0
    has_secondary = False
    for ex in payload.get("exchanges") or []:
        if not isinstance(ex, dict):
            continue
        name = str(ex.get("exchange") or ex.get("name") or ex.get("exchange_id") or "unknown")
        if not ex.get("success") or not ex.get("balances"):
            if not ex.get("success"):
                failed.append(name)
            continue
        ok += 1
        for symbol, bal in (ex.get("balances") or {}).items():
            if not isinstance(bal, dict):
                continue
            usd_value = coerce_float(bal.get("usd_value")) or 0.0
            secondary = coerce_float(bal.get("brl_value"))
            if secondary is None:
                secondary = coerce_float(bal.get("secondary_value"))
            if secondary is not None:
                has_secondary = True
                secondary_total += secondary
            assets.append(
                AssetValuation(
                    exchange=name,
                    symbol=str(bal.get("symbol") or symbol),
                    amount=coerce_float(bal.get("total")) or 0.0,
                    usd_value=usd_value,
                    change_24h=coerce_float(bal.get("change_24h")),
                    secondary_value=secondary,
                )
            )
    total = _total_from_payload(payload)
    if total is None:
        total = sum(a.usd_value for a in assets)
    return ValuationResult(
        total_primary=total,
        total_secondary=secondary_total if has_secondary else None,
        assets=assets,
        exchanges_ok=ok,
        exchanges_failed=failed,
        fetched_at_ms=now_ms(),
    )


class BalancesClient:
    """Client for the remote balance aggregation service (``POST /balances``)."""

    def __init__(self, base_url: str, token: str | None = None, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None):
        self.base = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def fetch_balances(self, exchanges: list[dict]) -> ValuationResult:
        url = f"{self.base}/balances"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(url, json={"exchanges": exchanges}, headers=self._headers())
        except httpx.HTTPError as exc:
            log.warning("balances_request_failed", err=str(exc))
            raise TransientSyncFailure(f"balances_request_failed: {exc}") from exc
        if r.status_code in AUTH_STATUSES:
            log.warning("balances_unauthorized", status=r.status_code)
            raise AuthorizationFailure(f"balances_unauthorized_{r.status_code}", status_code=r.status_code)
        if r.status_code >= 400:
            log.warning("balances_http_error", status=r.status_code, body=r.text[:500])
            raise TransientSyncFailure(f"balances_http_{r.status_code}")
        try:
            payload = r.json()
        except ValueError as exc:
            raise TransientSyncFailure("balances_invalid_json") from exc
        return parse_balance_response(payload)
