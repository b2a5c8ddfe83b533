"""Test doubles shared by the test modules."""
from decimal import Decimal
from typing import Dict, List, Optional

from spendsync.integrations.base import AdapterCredentials, PlatformAdapter
from spendsync.models.schemas.rows import CanonicalRow
from spendsync.services.currency import ExchangeRateCache

TEST_RATES: Dict[str, Decimal] = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.92"),
    "NOK": Decimal("10.8"),
    "GBP": Decimal("0.79"),
}


class StaticRateCache(ExchangeRateCache):
    """FX cache whose live source answers with fixed rates (or fails when ``rates`` is None)."""

    def __init__(self, rates: Optional[Dict[str, Decimal]] = None, fallback_rates: Optional[Dict[str, Decimal]] = None, **kwargs):
        super().__init__(api_url="https://fx.invalid/latest/USD", fallback_rates=fallback_rates or TEST_RATES, **kwargs)
        self.live_rates = rates
        self.fetches = 0

    async def _fetch_live_rates(self):
        self.fetches += 1
        return dict(self.live_rates) if self.live_rates else None


class StaticAdapter(PlatformAdapter):
    """Adapter returning prepared rows; ``error`` is raised instead when set."""

    platform = "meta"

    def __init__(self, rows: List[CanonicalRow], currency: str = "USD", error: Optional[Exception] = None, platform: Optional[str] = None):
        if platform:
            self.platform = platform
        super().__init__()
        self.rows = rows
        self.currency = currency
        self.error = error
        self.calls: List[tuple] = []

    async def _fetch_currency(self, credentials: AdapterCredentials, account_id: str) -> Optional[str]:
        return self.currency

    async def iter_rows(self, credentials, account_id, start_date, end_date, currency):
        self.calls.append((account_id, start_date, end_date, currency))
        if self.error is not None:
            raise self.error
        for row in self.rows:
            yield row


class RecordingAdapterMixin:
    """Replaces ``_request_json`` with canned responses matched by URL substring."""

    def __init__(self, responses: Dict[str, list]):
        super().__init__()
        self.responses = {key: list(values) for key, values in responses.items()}
        self.requests: List[dict] = []

    async def _request_json(self, method, url, *, headers=None, params=None, json=None, data=None, timeout=None):
        self.requests.append({"method": method, "url": url, "headers": headers, "params": params, "json": json})
        for fragment, queue in self.responses.items():
            if fragment in url:
                response = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(response, Exception):
                    raise response
                return response
        raise AssertionError(f"unexpected request to {url}")
