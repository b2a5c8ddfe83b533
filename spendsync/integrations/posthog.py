"""
PostHog revenue integration (HogQL query API).

Purchase events are grouped by country and day in a single query. Amounts on
these events are already normalized to USD upstream, so rows are tagged USD.
The purchase event name doubles as the campaign identifier.
"""
from datetime import date, timedelta
from typing import AsyncIterator, Dict

from spendsync.config import NORMALIZED_CURRENCY
from spendsync.models.db.enums import PlatformTag
from spendsync.models.schemas.rows import CanonicalRow
from .base import AdapterCredentials, PlatformAdapter, to_decimal, to_int

DEFAULT_HOST = "https://app.posthog.com"
DEFAULT_PURCHASE_EVENT = "rc_initial_purchase"
DEFAULT_REVENUE_PROPERTY = "revenue"

REVENUE_QUERY = """
    SELECT
      properties.country_code AS country,
      toDate(timestamp) AS day,
      sum(toFloat(properties.{revenue_property})) AS total_revenue,
      count(*) AS purchases
    FROM events
    WHERE event = {{event}}
      AND timestamp >= toDateTime({{start}})
      AND timestamp < toDateTime({{end}})
    GROUP BY country, day
    ORDER BY day DESC
"""


class PostHogAdapter(PlatformAdapter):
    platform = PlatformTag.POSTHOG.value

    def _headers(self, credentials: AdapterCredentials) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credentials.access_token}",
            "Content-Type": "application/json",
        }

    async def iter_rows(
        self,
        credentials: AdapterCredentials,
        account_id: str,
        start_date: date,
        end_date: date,
        currency: str,
    ) -> AsyncIterator[CanonicalRow]:
        settings = credentials.settings
        host = str(settings.get("posthog_host") or DEFAULT_HOST).rstrip("/")
        event = str(settings.get("purchase_event") or DEFAULT_PURCHASE_EVENT)
        revenue_property = str(settings.get("revenue_property") or DEFAULT_REVENUE_PROPERTY)
        if not revenue_property.replace("_", "").isalnum():
            revenue_property = DEFAULT_REVENUE_PROPERTY

        body = {
            "query": {
                "kind": "HogQLQuery",
                "query": REVENUE_QUERY.format(revenue_property=revenue_property),
                "values": {
                    "event": event,
                    "start": start_date.isoformat(),
                    # end of window is inclusive
                    "end": (end_date + timedelta(days=1)).isoformat(),
                },
            }
        }
        payload = await self._request_json(
            "POST",
            f"{host}/api/projects/{account_id}/query/",
            headers=self._headers(credentials),
            json=body,
        ) or {}

        for result in payload.get("results") or []:
            if isinstance(result, dict):
                country = result.get("country") or result.get("country_code")
                day = result.get("day") or result.get("date")
                revenue = result.get("total_revenue", result.get("revenue"))
                purchases = result.get("purchases")
            else:
                country, day, revenue, purchases = (list(result) + [None] * 4)[:4]
            day = self._row_day(day, None, event=event)
            if day is None:
                continue
            yield self._row(
                campaign_id=event,
                country_code=country,
                day=day,
                currency=NORMALIZED_CURRENCY,
                revenue=to_decimal(revenue),
                purchases=to_int(purchases),
            )
