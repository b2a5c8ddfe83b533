from .aggregates import CountryDailyAggregate, CampaignDailyAggregate
from .campaign_settings import CampaignAttributionSetting
from .connected_accounts import ConnectedAccount
from .sync_log import SyncLog
from .enums import AttributionMode, MergeMode, PlatformTag, SyncStatus

__all__ = [
    "CountryDailyAggregate",
    "CampaignDailyAggregate",
    "CampaignAttributionSetting",
    "ConnectedAccount",
    "SyncLog",
    "AttributionMode",
    "MergeMode",
    "PlatformTag",
    "SyncStatus",
]
