"""
Meta (Facebook/Instagram) Marketing API integration.

Campaign-level insights broken down by country, one row per day. Pagination
follows the absolute ``paging.next`` URL until it disappears.
"""
import json
from datetime import date
from typing import AsyncIterator, Optional

from spendsync.models.db.enums import PlatformTag
from spendsync.models.schemas.rows import CanonicalRow
from .base import AdapterCredentials, PlatformAdapter, to_decimal, to_int

GRAPH_API = "https://graph.facebook.com/v19.0"
PAGE_LIMIT = 500


def ad_account_path(account_id: str) -> str:
    account_id = str(account_id).strip()
    return account_id if account_id.startswith("act_") else f"act_{account_id}"


class MetaAdapter(PlatformAdapter):
    platform = PlatformTag.META.value

    async def _fetch_currency(self, credentials: AdapterCredentials, account_id: str) -> Optional[str]:
        payload = await self._request_json(
            "GET",
            f"{GRAPH_API}/{ad_account_path(account_id)}",
            params={"fields": "currency", "access_token": credentials.access_token},
        )
        return (payload or {}).get("currency")

    async def iter_rows(
        self,
        credentials: AdapterCredentials,
        account_id: str,
        start_date: date,
        end_date: date,
        currency: str,
    ) -> AsyncIterator[CanonicalRow]:
        url: Optional[str] = f"{GRAPH_API}/{ad_account_path(account_id)}/insights"
        params: Optional[dict] = {
            "access_token": credentials.access_token,
            "fields": "campaign_id,campaign_name,spend,impressions,clicks",
            "time_range": json.dumps({"since": start_date.isoformat(), "until": end_date.isoformat()}),
            "time_increment": "1",
            "level": "campaign",
            "breakdowns": "country",
            "limit": str(PAGE_LIMIT),
        }

        pages = 0
        while url:
            payload = await self._request_json("GET", url, params=params) or {}
            pages += 1
            for item in payload.get("data") or []:
                day = self._row_day(item.get("date_start"), end_date, campaign_id=item.get("campaign_id"))
                if day is None:
                    continue
                yield self._row(
                    campaign_id=item.get("campaign_id") or item.get("campaign_name"),
                    campaign_name=item.get("campaign_name") or None,
                    country_code=item.get("country"),
                    day=day,
                    currency=currency,
                    spend=to_decimal(item.get("spend")),
                    impressions=to_int(item.get("impressions")),
                    clicks=to_int(item.get("clicks")),
                )
            # next is absolute and already carries every query parameter
            url = (payload.get("paging") or {}).get("next")
            params = None

        self.logger.debug("Meta insights paginated", account_id=account_id, pages=pages)
