"""Common adapter contract and HTTP plumbing for provider integrations.

Every adapter turns a provider's report into ``CanonicalRow`` objects for one
account and one inclusive date window. Adapters do not convert currency; each
row carries the currency it was reported in.

HTTP failures are classified once, in ``request_json``:

* 401 / 403            -> PlatformNotConnectedError (user must reconnect)
* 429                  -> ProviderRateLimitedError (transient)
* 5xx, timeout, socket -> ProviderTransientError
* other 4xx            -> ProviderRequestError
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

import aiohttp

from spendsync.config import NORMALIZED_CURRENCY, PROVIDER_TIMEOUTS
from spendsync.exceptions import (
    PlatformNotConnectedError,
    ProviderRateLimitedError,
    ProviderRequestError,
    ProviderTransientError,
    SpendSyncError,
)
from spendsync.models.schemas.rows import CanonicalRow
from spendsync.utils import get_logger
from spendsync.utils.time import parse_day_or_none


def to_decimal(value: Any) -> Decimal:
    """Parse a provider number. Malformed, non-finite or negative input becomes 0."""
    if value is None or value == "":
        return Decimal("0")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not number.is_finite() or number < 0:
        return Decimal("0")
    return number


def to_int(value: Any) -> int:
    """Parse a provider count. Malformed or negative input becomes 0."""
    return int(to_decimal(value))


async def request_json(
    platform: str,
    method: str,
    url: str,
    *,
    timeout: float,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, str]] = None,
    json: Any = None,
    data: Any = None,
) -> Any:
    """Perform one HTTP call for ``platform`` and return the decoded JSON body."""
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    try:
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.request(
                method, url, headers=headers, params=params, json=json, data=data
            ) as response:
                status = response.status
                if status in (401, 403):
                    raise PlatformNotConnectedError(platform, f"provider answered HTTP {status}")
                if status == 429:
                    raise ProviderRateLimitedError(platform, "rate limited (HTTP 429)")
                if status >= 500:
                    raise ProviderTransientError(platform, f"provider answered HTTP {status}")
                if status >= 400:
                    body = await response.text()
                    raise ProviderRequestError(platform, f"HTTP {status}: {body[:300]}", status_code=status)
                return await response.json(content_type=None)
    except asyncio.TimeoutError:
        raise ProviderTransientError(platform, "request timed out")
    except aiohttp.ClientError as e:
        raise ProviderTransientError(platform, f"transport error: {e}")
    except ValueError as e:
        raise ProviderTransientError(platform, f"invalid JSON response: {e}")


@dataclass(frozen=True)
class AdapterCredentials:
    access_token: str
    settings: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class AdapterResult:
    currency: str
    rows: List[CanonicalRow] = field(default_factory=list)


class PlatformAdapter(ABC):
    """Base class for one provider integration."""

    platform: str = ""

    def __init__(self):
        self.logger = get_logger(f"integration.{self.platform}")

    @property
    def timeout_seconds(self) -> float:
        return PROVIDER_TIMEOUTS.get(self.platform, PROVIDER_TIMEOUTS["default"])

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        data: Any = None,
        timeout: Optional[float] = None,
    ) -> Any:
        return await request_json(
            self.platform,
            method,
            url,
            timeout=timeout or self.timeout_seconds,
            headers=headers,
            params=params,
            json=json,
            data=data,
        )

    def _row(self, *, campaign_id: Any, country_code: Optional[str], day: date, currency: str, **values: Any) -> CanonicalRow:
        return CanonicalRow(
            platform=self.platform,
            campaign_id=str(campaign_id or "unknown"),
            country_code=country_code,
            date=day,
            currency_code=currency,
            **values,
        )

    def _row_day(self, raw: Any, fallback: Optional[date], **context: Any) -> Optional[date]:
        """Day of a provider row: ``fallback`` when absent, None (logged) when malformed."""
        if raw is None or raw == "":
            return fallback
        day = parse_day_or_none(raw)
        if day is None:
            self.logger.warning("Skipping row with malformed date", value=str(raw)[:32], **context)
        return day

    async def _fetch_currency(self, credentials: AdapterCredentials, account_id: str) -> Optional[str]:
        """Account reporting currency. Adapters whose rows carry their own currency keep the default."""
        return NORMALIZED_CURRENCY

    async def resolve_currency(self, credentials: AdapterCredentials, account_id: str) -> str:
        try:
            currency = await self._fetch_currency(credentials, account_id)
        except SpendSyncError as e:
            self.logger.warning("Failed to resolve account currency, defaulting to USD", account_id=account_id, error=str(e))
            return NORMALIZED_CURRENCY
        if not currency:
            self.logger.warning("Provider returned no account currency, defaulting to USD", account_id=account_id)
            return NORMALIZED_CURRENCY
        return str(currency).upper()

    @abstractmethod
    def iter_rows(
        self,
        credentials: AdapterCredentials,
        account_id: str,
        start_date: date,
        end_date: date,
        currency: str,
    ) -> AsyncIterator[CanonicalRow]:
        """Yield rows for the inclusive window, following provider pagination."""

    async def fetch_rows(
        self,
        credentials: AdapterCredentials,
        account_id: str,
        start_date: date,
        end_date: date,
    ) -> AdapterResult:
        """Resolve the account currency, then materialize every row in the window."""
        currency = await self.resolve_currency(credentials, account_id)
        rows = [
            row async for row in self.iter_rows(credentials, account_id, start_date, end_date, currency)
        ]
        self.logger.info(
            "Fetched provider rows",
            account_id=account_id,
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            currency=currency,
            rows=len(rows),
        )
        return AdapterResult(currency=currency, rows=rows)


__all__ = [
    "AdapterCredentials",
    "AdapterResult",
    "PlatformAdapter",
    "request_json",
    "to_decimal",
    "to_int",
]
