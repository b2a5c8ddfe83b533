"""
Google Ads integration (REST searchStream, API v20).

Spend is reported in micros of the customer's currency; geography comes from
``geographic_view.country_criterion_id`` and is mapped through the versioned
geo-target table.
"""
from datetime import date
from typing import Any, AsyncIterator, Dict, List, Optional

from spendsync.config import GOOGLE_ADS_DEVELOPER_TOKEN, PROVIDER_TIMEOUTS
from spendsync.exceptions import PlatformNotConnectedError
from spendsync.models.db.enums import PlatformTag
from spendsync.models.schemas.rows import CanonicalRow
from .base import AdapterCredentials, PlatformAdapter, to_decimal, to_int
from .geo import GOOGLE_ADS_GEO_TARGETS

API_BASE = "https://googleads.googleapis.com/v20"
MICROS = 1_000_000

CURRENCY_QUERY = "SELECT customer.currency_code FROM customer LIMIT 1"

REPORT_QUERY = """
    SELECT campaign.id, campaign.name, geographic_view.country_criterion_id,
           segments.date, metrics.cost_micros, metrics.impressions, metrics.clicks
    FROM geographic_view
    WHERE segments.date BETWEEN '{start}' AND '{end}'
      AND campaign.status != 'REMOVED'
"""


def clean_customer_id(customer_id: str) -> str:
    return str(customer_id).replace("-", "").strip()


def _batches(payload: Any) -> List[Dict[str, Any]]:
    # searchStream answers with a JSON array of result batches
    if isinstance(payload, list):
        return [b for b in payload if isinstance(b, dict)]
    if isinstance(payload, dict):
        return [payload]
    return []


class GoogleAdsAdapter(PlatformAdapter):
    platform = PlatformTag.GOOGLE_ADS.value

    def _headers(self, credentials: AdapterCredentials) -> Dict[str, str]:
        developer_token = credentials.settings.get("developer_token") or GOOGLE_ADS_DEVELOPER_TOKEN
        if not developer_token:
            raise PlatformNotConnectedError(self.platform, "no developer token configured")
        headers = {
            "Authorization": f"Bearer {credentials.access_token}",
            "developer-token": str(developer_token),
            "Content-Type": "application/json",
        }
        login_customer_id = credentials.settings.get("login_customer_id")
        if login_customer_id:
            headers["login-customer-id"] = clean_customer_id(login_customer_id)
        return headers

    def _stream_url(self, account_id: str) -> str:
        return f"{API_BASE}/customers/{clean_customer_id(account_id)}/googleAds:searchStream"

    async def _fetch_currency(self, credentials: AdapterCredentials, account_id: str) -> Optional[str]:
        payload = await self._request_json(
            "POST",
            self._stream_url(account_id),
            headers=self._headers(credentials),
            json={"query": CURRENCY_QUERY},
            timeout=PROVIDER_TIMEOUTS["google_ads_currency"],
        )
        for batch in _batches(payload):
            for result in batch.get("results") or []:
                code = (result.get("customer") or {}).get("currencyCode")
                if code:
                    return code
        return None

    async def iter_rows(
        self,
        credentials: AdapterCredentials,
        account_id: str,
        start_date: date,
        end_date: date,
        currency: str,
    ) -> AsyncIterator[CanonicalRow]:
        query = REPORT_QUERY.format(start=start_date.isoformat(), end=end_date.isoformat())
        payload = await self._request_json(
            "POST",
            self._stream_url(account_id),
            headers=self._headers(credentials),
            json={"query": query},
        )

        for batch in _batches(payload):
            for result in batch.get("results") or []:
                campaign = result.get("campaign") or {}
                metrics = result.get("metrics") or {}
                segments = result.get("segments") or {}
                criterion_id = (result.get("geographicView") or {}).get("countryCriterionId")
                day = self._row_day(segments.get("date"), end_date, campaign_id=campaign.get("id"))
                if day is None:
                    continue

                yield self._row(
                    campaign_id=campaign.get("id"),
                    campaign_name=campaign.get("name") or None,
                    country_code=GOOGLE_ADS_GEO_TARGETS.lookup(criterion_id),
                    day=day,
                    currency=currency,
                    spend=to_decimal(metrics.get("costMicros")) / MICROS,
                    impressions=to_int(metrics.get("impressions")),
                    clicks=to_int(metrics.get("clicks")),
                )
