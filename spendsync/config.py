"""Core configuration & tunable ingestion rules.

Everything that may need adjustment without touching service logic (FX cache
lifetime, fallback rates, token refresh margins, provider timeouts, sync
windows, lock behaviour) lives here as module constants. Values that differ
per deployment are read from the environment at import time; tests
monkeypatch the dicts directly.
"""
from __future__ import annotations

import os
from decimal import Decimal
from typing import Final

# All stored monetary values are expressed in this currency.
NORMALIZED_CURRENCY: Final[str] = "USD"

# Sentinel stored in country_code columns when the provider has no geography.
UNKNOWN_COUNTRY: Final[str] = ""

# Precision used when persisting money into the aggregate tables.
MONEY_QUANT: Final[Decimal] = Decimal("0.01")

# ------------------------------ Exchange Rates ----------------------------- #
FX_SETTINGS: dict[str, float | str] = {
    "api_url": os.getenv("FX_API_URL", "https://open.er-api.com/v6/latest/USD"),
    "ttl_hours": float(os.getenv("FX_CACHE_TTL_HOURS", "12")),
    "timeout_seconds": float(os.getenv("FX_TIMEOUT_SECONDS", "10")),
}

# "1 USD = X units" for the most common currencies (approximate, Feb 2026).
# Served only when the live source fails and nothing was cached before.
FALLBACK_RATES: dict[str, Decimal] = {
    code: Decimal(rate)
    for code, rate in {
        "USD": "1", "EUR": "0.92", "GBP": "0.79", "NOK": "10.8", "SEK": "10.5",
        "DKK": "6.9", "CAD": "1.36", "AUD": "1.55", "JPY": "150", "CHF": "0.88",
        "CNY": "7.24", "NZD": "1.68", "SGD": "1.34", "HKD": "7.82", "INR": "83.1",
        "BRL": "4.97", "MXN": "17.1", "ZAR": "18.6", "TRY": "30.2", "PLN": "4.02",
        "KRW": "1320", "THB": "35.1", "IDR": "15700", "MYR": "4.72", "PHP": "56.2",
        "VND": "24500", "CZK": "23.2", "ILS": "3.64", "HUF": "362", "RON": "4.59",
        "BGN": "1.80", "HRK": "6.93", "RUB": "91.5", "UAH": "41.2", "AED": "3.67",
        "SAR": "3.75", "TWD": "31.5", "PKR": "278", "EGP": "30.9", "NGN": "1540",
        "KES": "153", "BDT": "110", "COP": "3950", "ARS": "870",
    }.items()
}

# ------------------------------- Credentials ------------------------------- #
CREDENTIAL_SETTINGS: dict[str, int] = {
    # Tokens expiring within this margin are refreshed before use.
    "refresh_margin_seconds": 5 * 60,
    # Used when the provider omits expires_in from the refresh response.
    "default_lifetime_seconds": 3600,
}

# Provider refresh-token exchanges. "body" selects JSON vs form encoding.
OAUTH_CLIENTS: dict[str, dict[str, str | None]] = {
    "google_ads": {
        "token_url": "https://oauth2.googleapis.com/token",
        "client_id": os.getenv("GOOGLE_CLIENT_ID"),
        "client_secret": os.getenv("GOOGLE_CLIENT_SECRET"),
        "body": "json",
    },
    "linkedin": {
        "token_url": "https://www.linkedin.com/oauth/v2/accessToken",
        "client_id": os.getenv("LINKEDIN_CLIENT_ID"),
        "client_secret": os.getenv("LINKEDIN_CLIENT_SECRET"),
        "body": "form",
    },
}

GOOGLE_ADS_DEVELOPER_TOKEN: str | None = os.getenv("GOOGLE_ADS_DEVELOPER_TOKEN") or None

# -------------------------------- Providers -------------------------------- #
# Per-call timeouts (seconds) for outbound provider requests.
PROVIDER_TIMEOUTS: dict[str, float] = {
    "default": 30.0,
    "google_ads": 60.0,
    "google_ads_currency": 15.0,
    "meta": 30.0,
    "tiktok": 30.0,
    "linkedin": 30.0,
    "stripe": 30.0,
    "posthog": 30.0,
    "revenuecat": 30.0,
    "oauth": 15.0,
}

# Webhook event types that represent revenue. Anything else is skipped.
REVENUECAT_REVENUE_EVENTS: frozenset[str] = frozenset({
    "INITIAL_PURCHASE",
    "RENEWAL",
    "NON_RENEWING_PURCHASE",
    "UNCANCELLATION",
})

# ---------------------------------- Sync ----------------------------------- #
SYNC_SETTINGS: dict[str, int] = {
    "initial_days": 30,        # first sync for a user/platform
    "incremental_days": 3,     # subsequent syncs re-fetch a short window
    "stale_lock_minutes": 10,  # a 'syncing' row older than this is reclaimable
}

# Retry scheduling for failed syncs (exponential, see utils/backoff.py).
BACKOFF_POLICY: dict[str, int | float] = {
    "base_seconds": 60,
    "factor": 2,
    "max_seconds": 4 * 60 * 60,
    "jitter_pct": 0.10,
}

# ---------------------------------- Locks ---------------------------------- #
LOCK_SETTINGS: dict[str, bool | str | int] = {
    "use_redis": os.getenv("USE_REDIS_LOCKS", "false").lower() in ("1", "true", "yes"),
    "redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
    "key_prefix": "spendsync:lock",
    "ttl_ms": 30_000,
    "wait_timeout_seconds": 20,
    "poll_interval_ms": 100,
}

__all__ = [
    "NORMALIZED_CURRENCY",
    "UNKNOWN_COUNTRY",
    "MONEY_QUANT",
    "FX_SETTINGS",
    "FALLBACK_RATES",
    "CREDENTIAL_SETTINGS",
    "OAUTH_CLIENTS",
    "GOOGLE_ADS_DEVELOPER_TOKEN",
    "PROVIDER_TIMEOUTS",
    "REVENUECAT_REVENUE_EVENTS",
    "SYNC_SETTINGS",
    "BACKOFF_POLICY",
    "LOCK_SETTINGS",
]
