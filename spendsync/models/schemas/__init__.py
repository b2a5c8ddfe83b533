from .base import ResponseBase, MetricTotals
from .rows import CanonicalRow, normalize_country
from .attribution import (
    AttributionSettingUpdate,
    AttributionSettingRead,
    CampaignSummary,
    CountryContributionRead,
    NeedsDetailRead,
    RollupRead,
)
from .entries import ManualEntryCreate, ManualEntryKey, ManualEntryPage, ManualEntryRead, ManualEntryUpdate
from .webhooks import RevenueCatEvent, RevenueCatWebhook, WebhookOutcome
from .sync import SyncRunRead, PlatformSyncStatus, SyncStatusRead

__all__ = [
    "ResponseBase",
    "MetricTotals",
    "CanonicalRow",
    "normalize_country",
    "AttributionSettingUpdate",
    "AttributionSettingRead",
    "CampaignSummary",
    "CountryContributionRead",
    "NeedsDetailRead",
    "RollupRead",
    "ManualEntryCreate",
    "ManualEntryKey",
    "ManualEntryUpdate",
    "ManualEntryRead",
    "ManualEntryPage",
    "RevenueCatEvent",
    "RevenueCatWebhook",
    "WebhookOutcome",
    "SyncRunRead",
    "PlatformSyncStatus",
    "SyncStatusRead",
]
