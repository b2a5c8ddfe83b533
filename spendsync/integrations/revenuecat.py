"""
RevenueCat integration.

Two entry points:

* ``RevenueCatAdapter.iter_rows`` walks the v2 REST API (customers, then each
  customer's purchases and subscriptions) for a re-sync window. Rows keep the
  purchase currency.
* ``process_webhook_event`` handles one pushed event: revenue events are
  converted to USD immediately and accumulated into both aggregates.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import re
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from spendsync.config import NORMALIZED_CURRENCY, REVENUECAT_REVENUE_EVENTS
from spendsync.models.db.enums import MergeMode, PlatformTag
from spendsync.models.schemas.rows import CanonicalRow, normalize_country
from spendsync.models.schemas.webhooks import RevenueCatEvent, WebhookOutcome
from spendsync.services.currency import ExchangeRateCache, get_exchange_rate_cache
from spendsync.services.merge_engine import merge_rows, quantize_money
from spendsync.utils import get_logger
from spendsync.utils.time import day_from_epoch_ms, utc_now
from .base import AdapterCredentials, PlatformAdapter, to_decimal

API_HOST = "https://api.revenuecat.com"
API_BASE = f"{API_HOST}/v2"
PAGE_LIMIT = 100
CUSTOMER_BATCH_SIZE = 10
UNKNOWN_PRODUCT = "unknown"

logger = get_logger(__name__)


def clean_project_id(raw: Any) -> str:
    """Accept a bare project id or a pasted dashboard URL ending in one."""
    project_id = str(raw or "").strip()
    if "/" in project_id:
        project_id = project_id.rstrip("/").split("/")[-1]
    return re.sub(r"^https?:?/?/?", "", project_id).strip()


def parse_timestamp(value: Any) -> Optional[dt.datetime]:
    """RevenueCat timestamps are epoch milliseconds or ISO-8601 strings."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        return dt.datetime.fromtimestamp(int(value) / 1000.0, tz=dt.timezone.utc)
    try:
        parsed = dt.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=dt.timezone.utc)


def transaction_amount(item: Dict[str, Any]) -> Tuple[Decimal, str]:
    """Gross amount and its currency for a purchase or subscription object."""
    usd = item.get("revenue_in_usd")
    if isinstance(usd, dict) and usd.get("gross") is not None:
        return to_decimal(usd.get("gross")), NORMALIZED_CURRENCY
    price = item.get("price") or item.get("revenue") or item.get("total_revenue")
    if isinstance(price, dict):
        return to_decimal(price.get("amount") or price.get("gross")), str(price.get("currency") or item.get("currency") or NORMALIZED_CURRENCY).upper()
    return to_decimal(price), str(item.get("currency") or NORMALIZED_CURRENCY).upper()


class RevenueCatAdapter(PlatformAdapter):
    platform = PlatformTag.REVENUECAT.value

    def _headers(self, credentials: AdapterCredentials) -> Dict[str, str]:
        return {"Authorization": f"Bearer {credentials.access_token}"}

    def _next_url(self, next_page: Optional[str]) -> Optional[str]:
        if not next_page:
            return None
        if next_page.startswith("http"):
            return next_page
        return f"{API_HOST}{next_page}"

    async def _paginate(self, credentials: AdapterCredentials, url: str) -> AsyncIterator[Dict[str, Any]]:
        next_url: Optional[str] = url
        while next_url:
            payload = await self._request_json("GET", next_url, headers=self._headers(credentials)) or {}
            for item in payload.get("items") or []:
                yield item
            next_url = self._next_url(payload.get("next_page"))

    async def _collect(self, credentials: AdapterCredentials, url: str) -> List[Dict[str, Any]]:
        return [item async for item in self._paginate(credentials, url)]

    async def _customer_rows(
        self,
        credentials: AdapterCredentials,
        project_id: str,
        customer: Dict[str, Any],
        start: dt.datetime,
        end: dt.datetime,
    ) -> List[CanonicalRow]:
        base = f"{API_BASE}/projects/{project_id}/customers/{customer['id']}"
        purchases, subscriptions = await asyncio.gather(
            self._collect(credentials, f"{base}/purchases?limit={PAGE_LIMIT}"),
            self._collect(credentials, f"{base}/subscriptions?limit={PAGE_LIMIT}"),
        )

        rows: List[CanonicalRow] = []
        transactions = [(p, p.get("purchased_at")) for p in purchases] + [
            (s, s.get("current_period_starts_at") or s.get("starts_at") or s.get("purchased_at"))
            for s in subscriptions
        ]
        for item, raw_timestamp in transactions:
            occurred_at = parse_timestamp(raw_timestamp)
            if occurred_at is None or occurred_at < start or occurred_at > end:
                continue
            amount, currency = transaction_amount(item)
            if amount <= 0:
                continue
            rows.append(self._row(
                campaign_id=item.get("product_id") or UNKNOWN_PRODUCT,
                country_code=item.get("country_code") or customer.get("country_code"),
                day=occurred_at.date(),
                currency=currency,
                revenue=amount,
                purchases=1,
            ))
        return rows

    async def iter_rows(
        self,
        credentials: AdapterCredentials,
        account_id: str,
        start_date: dt.date,
        end_date: dt.date,
        currency: str,
    ) -> AsyncIterator[CanonicalRow]:
        project_id = clean_project_id(account_id)
        start = dt.datetime.combine(start_date, dt.time.min, tzinfo=dt.timezone.utc)
        end = dt.datetime.combine(end_date, dt.time.max, tzinfo=dt.timezone.utc)

        customers = [
            c async for c in self._paginate(credentials, f"{API_BASE}/projects/{project_id}/customers?limit={PAGE_LIMIT}")
            if c.get("id")
        ]
        self.logger.info("RevenueCat customers listed", project_id=project_id, customers=len(customers))

        for offset in range(0, len(customers), CUSTOMER_BATCH_SIZE):
            batch = customers[offset:offset + CUSTOMER_BATCH_SIZE]
            results = await asyncio.gather(
                *(self._customer_rows(credentials, project_id, c, start, end) for c in batch)
            )
            for rows in results:
                for row in rows:
                    yield row


async def process_webhook_event(
    session: Session,
    user_id: int,
    event: RevenueCatEvent,
    fx_cache: Optional[ExchangeRateCache] = None,
) -> WebhookOutcome:
    """Convert one revenue event to USD and accumulate it into both aggregates.

    Non-revenue event types and non-positive prices are skipped, not errors.
    Delivery de-duplication is the caller's concern: replaying an event counts
    it twice.
    """
    if event.type not in REVENUECAT_REVENUE_EVENTS:
        return WebhookOutcome(skipped=True, reason=f"Event type {event.type} is not a revenue event")

    price = to_decimal(
        event.price_in_purchased_currency if event.price_in_purchased_currency not in (None, "") else event.price
    )
    if price <= 0:
        return WebhookOutcome(skipped=True, reason="Zero or negative price")

    currency = (event.currency or NORMALIZED_CURRENCY).strip().upper()
    country = normalize_country(event.country_code)
    product_id = event.product_id or UNKNOWN_PRODUCT
    day = day_from_epoch_ms(event.purchased_at_ms) if event.purchased_at_ms else utc_now().date()

    cache = fx_cache or get_exchange_rate_cache()
    revenue = quantize_money(await cache.convert(price, currency))

    row = CanonicalRow(
        platform=RevenueCatAdapter.platform,
        campaign_id=product_id,
        country_code=country or None,
        date=day,
        revenue=revenue,
        purchases=1,
        currency_code=NORMALIZED_CURRENCY,
    )
    merge_rows(session, user_id, [row], MergeMode.ACCUMULATE)

    logger.info(
        "RevenueCat webhook event processed",
        user_id=user_id,
        event_type=event.type,
        country_code=country,
        product_id=product_id,
        revenue=str(revenue),
    )
    return WebhookOutcome(
        processed=True,
        details={
            "type": event.type,
            "country_code": country,
            "revenue": float(revenue),
            "product_id": product_id,
            "date": day.isoformat(),
        },
    )


__all__ = ["RevenueCatAdapter", "process_webhook_event", "clean_project_id", "parse_timestamp"]
