"""
Pydantic schemas for sync runs and sync status.
"""
import datetime as dt
from typing import Dict, Optional
from pydantic import BaseModel, Field

from spendsync.models.db.enums import SyncStatus


class SyncRunRead(BaseModel):
    platform: str
    status: SyncStatus
    start_date: dt.date
    end_date: dt.date
    records_synced: int = 0
    discarded_empty: int = 0
    duration_ms: float = 0.0


class PlatformSyncStatus(BaseModel):
    status: SyncStatus
    last_synced_at: Optional[dt.datetime] = None
    started_at: Optional[dt.datetime] = None
    error: Optional[str] = None
    records_synced: int = 0
    consecutive_failures: int = 0
    next_retry_at: Optional[dt.datetime] = None


class SyncStatusRead(BaseModel):
    last_synced_at: Optional[dt.datetime] = None
    is_syncing: bool = False
    platforms: Dict[str, PlatformSyncStatus] = Field(default_factory=dict)
