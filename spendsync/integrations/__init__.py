"""
Integrations package initialization.
Registers one adapter class per built-in platform tag.
"""
from typing import Dict, Type

from spendsync.exceptions import UnsupportedPlatformError
from spendsync.models.db.enums import PlatformTag
from .base import AdapterCredentials, AdapterResult, PlatformAdapter
from .google_ads import GoogleAdsAdapter
from .meta import MetaAdapter
from .tiktok import TikTokAdapter
from .linkedin import LinkedInAdapter
from .stripe import StripeAdapter
from .posthog import PostHogAdapter
from .revenuecat import RevenueCatAdapter

_ADAPTER_CLASSES: Dict[PlatformTag, Type[PlatformAdapter]] = {
    PlatformTag.GOOGLE_ADS: GoogleAdsAdapter,
    PlatformTag.META: MetaAdapter,
    PlatformTag.TIKTOK: TikTokAdapter,
    PlatformTag.LINKEDIN: LinkedInAdapter,
    PlatformTag.STRIPE: StripeAdapter,
    PlatformTag.POSTHOG: PostHogAdapter,
    PlatformTag.REVENUECAT: RevenueCatAdapter,
}

# Keyed by the plain tag string stored in the database.
ADAPTERS: Dict[str, Type[PlatformAdapter]] = {tag.value: adapter for tag, adapter in _ADAPTER_CLASSES.items()}


def get_adapter(platform: str) -> PlatformAdapter:
    adapter_cls = ADAPTERS.get(platform)
    if adapter_cls is None:
        raise UnsupportedPlatformError(f"No adapter registered for platform '{platform}'")
    return adapter_cls()


__all__ = [
    "ADAPTERS",
    "AdapterCredentials",
    "AdapterResult",
    "PlatformAdapter",
    "get_adapter",
]
