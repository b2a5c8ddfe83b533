"""Currency conversion into the normalized unit (USD).

Rates are "1 USD = X units" as published by open.er-api.com. They are held in
an ``ExchangeRateCache`` instance:

* a snapshot younger than ``FX_SETTINGS['ttl_hours']`` is served as is;
* an expired (or missing) snapshot triggers one live fetch; concurrent callers
  that already hold a previous snapshot are served that snapshot instead of
  queueing behind the fetch;
* a failed fetch keeps the previous snapshot, or serves ``FALLBACK_RATES``
  when nothing was ever fetched. The fallback table is never cached, so the
  next call tries the live source again.

Conversion happens once, at ingestion. Stored aggregates are never
re-converted when rates change.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional

import aiohttp

from spendsync.config import FALLBACK_RATES, FX_SETTINGS, NORMALIZED_CURRENCY
from spendsync.models.schemas.rows import CanonicalRow
from spendsync.utils import get_logger
from spendsync.utils.time import utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class FxRateSnapshot:
    rates: Mapping[str, Decimal]
    fetched_at: datetime

    def is_fresh(self, ttl: timedelta, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) - self.fetched_at < ttl


def _to_rate(value: Any) -> Optional[Decimal]:
    try:
        rate = Decimal(str(value))
        return rate if rate > 0 else None
    except (InvalidOperation, ValueError):
        return None


def _as_decimal(amount: Any) -> Decimal:
    return amount if isinstance(amount, Decimal) else Decimal(str(amount))


def _needs_rate(amount: Decimal, currency_code: Optional[str]) -> bool:
    code = (currency_code or "").strip().upper()
    return bool(amount) and bool(code) and code != NORMALIZED_CURRENCY


def convert_with_rates(rates: Mapping[str, Decimal], amount: Any, currency_code: Optional[str]) -> Decimal:
    """Convert against an already resolved rate table. Unknown codes pass through unchanged."""
    amount = _as_decimal(amount)
    if not _needs_rate(amount, currency_code):
        return amount
    code = currency_code.strip().upper()
    rate = rates.get(code)
    if not rate:
        logger.warning("Unknown currency, amount left unconverted", currency=code)
        return amount
    return amount / rate


class ExchangeRateCache:
    """Owned, process-wide FX state with a TTL and a non-caching fallback."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        ttl_hours: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        fallback_rates: Optional[Mapping[str, Decimal]] = None,
    ):
        self.api_url = str(api_url or FX_SETTINGS["api_url"])
        self.ttl = timedelta(hours=float(ttl_hours if ttl_hours is not None else FX_SETTINGS["ttl_hours"]))
        self.timeout_seconds = float(timeout_seconds if timeout_seconds is not None else FX_SETTINGS["timeout_seconds"])
        self.fallback_rates: Mapping[str, Decimal] = MappingProxyType(dict(fallback_rates or FALLBACK_RATES))
        self._snapshot: Optional[FxRateSnapshot] = None
        self._refresh_lock = asyncio.Lock()

    @property
    def snapshot(self) -> Optional[FxRateSnapshot]:
        return self._snapshot

    def clear(self) -> None:
        self._snapshot = None

    async def _fetch_live_rates(self) -> Optional[dict[str, Decimal]]:
        """One request to the rates endpoint. Returns None on any failure."""
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.api_url) as response:
                    if response.status < 200 or response.status >= 300:
                        logger.warning("Exchange rate fetch failed", status_code=response.status, url=self.api_url)
                        return None
                    data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            logger.warning("Exchange rate fetch timed out", url=self.api_url, timeout_seconds=self.timeout_seconds)
            return None
        except (aiohttp.ClientError, ValueError) as e:
            logger.warning("Exchange rate fetch failed", url=self.api_url, error=str(e))
            return None

        raw_rates = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(raw_rates, dict) or not raw_rates:
            logger.warning("Exchange rate payload has no rates", url=self.api_url)
            return None

        rates: dict[str, Decimal] = {}
        for code, value in raw_rates.items():
            rate = _to_rate(value)
            if rate is not None:
                rates[str(code).upper()] = rate
        return rates or None

    async def get_rates(self) -> Mapping[str, Decimal]:
        snapshot = self._snapshot
        if snapshot is not None and snapshot.is_fresh(self.ttl):
            return snapshot.rates

        # Someone is refreshing already; a stale snapshot beats waiting.
        if snapshot is not None and self._refresh_lock.locked():
            return snapshot.rates

        async with self._refresh_lock:
            snapshot = self._snapshot
            if snapshot is not None and snapshot.is_fresh(self.ttl):
                return snapshot.rates

            rates = await self._fetch_live_rates()
            if rates:
                self._snapshot = FxRateSnapshot(rates=MappingProxyType(rates), fetched_at=utc_now())
                logger.info("Exchange rates refreshed", currencies=len(rates))
                return self._snapshot.rates

            if snapshot is not None:
                logger.warning("Serving stale exchange rates", fetched_at=snapshot.fetched_at.isoformat())
                return snapshot.rates

            logger.warning("Serving fallback exchange rates")
            return self.fallback_rates

    async def convert(self, amount: Decimal, currency_code: Optional[str]) -> Decimal:
        """Convert ``amount`` from ``currency_code`` into USD (``amount / rate``)."""
        amount = _as_decimal(amount)
        if not _needs_rate(amount, currency_code):
            return amount
        return convert_with_rates(await self.get_rates(), amount, currency_code)

    async def normalize_row(self, row: CanonicalRow, rates: Optional[Mapping[str, Decimal]] = None) -> CanonicalRow:
        """Return ``row`` with spend and revenue in USD."""
        if row.is_normalized:
            return row
        if rates is None:
            rates = await self.get_rates()
        return row.model_copy(update={
            "spend": convert_with_rates(rates, row.spend, row.currency_code),
            "revenue": convert_with_rates(rates, row.revenue, row.currency_code),
            "currency_code": NORMALIZED_CURRENCY,
        })

    async def normalize_rows(self, rows: Iterable[CanonicalRow]) -> List[CanonicalRow]:
        """Normalize a batch against a single rate lookup."""
        rows = list(rows)
        if all(row.is_normalized for row in rows):
            return rows
        rates = await self.get_rates()
        return [await self.normalize_row(row, rates) for row in rows]


_default_cache: Optional[ExchangeRateCache] = None


def get_exchange_rate_cache() -> ExchangeRateCache:
    """Shared cache for the running process."""
    global _default_cache
    if _default_cache is None:
        _default_cache = ExchangeRateCache()
    return _default_cache


__all__ = ["FxRateSnapshot", "ExchangeRateCache", "convert_with_rates", "get_exchange_rate_cache"]
