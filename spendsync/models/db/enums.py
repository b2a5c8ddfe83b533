"""Central Enum definitions for ingestion and aggregation states.

Platform tags stay plain strings in the database because manual sources are
tagged dynamically (``custom_<id>``); ``PlatformTag`` lists the built-in ones.
"""
from __future__ import annotations
import enum


class PlatformTag(str, enum.Enum):
    GOOGLE_ADS = "google_ads"
    META = "meta"
    TIKTOK = "tiktok"
    LINKEDIN = "linkedin"
    STRIPE = "stripe"
    POSTHOG = "posthog"
    REVENUECAT = "revenuecat"


class MergeMode(str, enum.Enum):
    OVERWRITE = "overwrite"
    ACCUMULATE = "accumulate"


class AttributionMode(str, enum.Enum):
    NONE = "none"
    SINGLE = "single"
    MULTIPLE = "multiple"


class SyncStatus(str, enum.Enum):
    SYNCING = "syncing"
    DONE = "done"
    ERROR = "error"


CUSTOM_PLATFORM_PREFIX = "custom_"


def is_custom_platform(platform: str) -> bool:
    return platform.startswith(CUSTOM_PLATFORM_PREFIX)


__all__ = [
    "PlatformTag",
    "MergeMode",
    "AttributionMode",
    "SyncStatus",
    "CUSTOM_PLATFORM_PREFIX",
    "is_custom_platform",
]
