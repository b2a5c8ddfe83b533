"""
Stripe revenue integration (Charges API).

Each succeeded charge becomes one purchase row in the charge's own currency.
Country comes from the billing address, falling back to the card country; the
campaign is the customer's ``utm_campaign`` metadata when present.
"""
from datetime import date
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, Optional

from spendsync.models.db.enums import PlatformTag
from spendsync.models.schemas.rows import CanonicalRow
from spendsync.utils.time import day_bounds_epoch, day_from_epoch
from .base import AdapterCredentials, PlatformAdapter, to_decimal

API_BASE = "https://api.stripe.com/v1"
PAGE_LIMIT = 100
UNATTRIBUTED_CAMPAIGN = "unattributed"

# Amounts in these currencies are not expressed in cents
ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA", "PYG", "RWF",
    "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})


def minor_to_major(amount: Any, currency: str) -> Decimal:
    value = to_decimal(amount)
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return value
    return value / 100


def charge_country(charge: Dict[str, Any]) -> Optional[str]:
    address = (charge.get("billing_details") or {}).get("address") or {}
    card = (charge.get("payment_method_details") or {}).get("card") or {}
    return address.get("country") or card.get("country") or None


def charge_campaign(charge: Dict[str, Any]) -> str:
    customer = charge.get("customer")
    metadata = customer.get("metadata") if isinstance(customer, dict) else None
    return (metadata or {}).get("utm_campaign") or UNATTRIBUTED_CAMPAIGN


class StripeAdapter(PlatformAdapter):
    platform = PlatformTag.STRIPE.value

    def _headers(self, credentials: AdapterCredentials) -> Dict[str, str]:
        return {"Authorization": f"Bearer {credentials.access_token}"}

    async def _fetch_currency(self, credentials: AdapterCredentials, account_id: str) -> Optional[str]:
        payload = await self._request_json("GET", f"{API_BASE}/account", headers=self._headers(credentials))
        return (payload or {}).get("default_currency")

    async def iter_rows(
        self,
        credentials: AdapterCredentials,
        account_id: str,
        start_date: date,
        end_date: date,
        currency: str,
    ) -> AsyncIterator[CanonicalRow]:
        created_gte, created_lte = day_bounds_epoch(start_date, end_date)
        starting_after: Optional[str] = None

        while True:
            params = {
                "created[gte]": str(created_gte),
                "created[lte]": str(created_lte),
                "limit": str(PAGE_LIMIT),
                "expand[]": "data.customer",
            }
            if starting_after:
                params["starting_after"] = starting_after

            payload = await self._request_json(
                "GET", f"{API_BASE}/charges", headers=self._headers(credentials), params=params
            ) or {}
            charges = payload.get("data") or []

            for charge in charges:
                starting_after = charge.get("id") or starting_after
                if charge.get("status") != "succeeded":
                    continue
                charge_currency = str(charge.get("currency") or currency).upper()
                net = to_decimal(charge.get("amount")) - to_decimal(charge.get("amount_refunded"))
                revenue = minor_to_major(net if net > 0 else 0, charge_currency)
                yield self._row(
                    campaign_id=charge_campaign(charge),
                    country_code=charge_country(charge),
                    day=day_from_epoch(float(to_decimal(charge.get("created")) or created_lte)),
                    currency=charge_currency,
                    revenue=revenue,
                    purchases=1,
                )

            if not payload.get("has_more") or not charges:
                break
