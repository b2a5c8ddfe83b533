"""Sync orchestration for one (user, platform).

Steps of a run:
1. Pick the window: the last ``initial_days`` on a first sync, otherwise the
   last ``incremental_days`` (providers restate recent days).
2. Take the sync_log lock: one conditional UPDATE (or INSERT on first run)
   that only succeeds when no fresh 'syncing' row exists. Locks older than
   ``stale_lock_minutes`` are reclaimable.
3. Get a valid token, fetch and materialize every row of the window.
4. Convert to USD and merge with ``overwrite`` over the window.
5. Release the lock as 'done', or as 'error' with the reason string, a failure
   counter and (for transient errors) a backoff-scheduled ``next_retry_at``.
"""
from __future__ import annotations

import datetime as dt
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional, Tuple, Union

from sqlalchemy import exists, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from spendsync.config import SYNC_SETTINGS
from spendsync.exceptions import (
    PlatformNotConnectedError,
    SpendSyncError,
    SyncInProgressError,
    UnsupportedPlatformError,
)
from spendsync.integrations import ADAPTERS, PlatformAdapter, get_adapter
from spendsync.models.db.aggregates import CampaignDailyAggregate, CountryDailyAggregate
from spendsync.models.db.connected_accounts import ConnectedAccount
from spendsync.models.db.enums import MergeMode, SyncStatus, is_custom_platform
from spendsync.models.db.sync_log import SyncLog
from spendsync.models.schemas.sync import PlatformSyncStatus, SyncRunRead, SyncStatusRead
from spendsync.services.credentials import CredentialManager, get_connection, get_credential_manager
from spendsync.services.currency import ExchangeRateCache, get_exchange_rate_cache
from spendsync.services.merge_engine import merge_rows
from spendsync.utils import get_logger, log_performance
from spendsync.utils.backoff import compute_backoff_seconds
from spendsync.utils.time import as_utc, utc_now

logger = get_logger(__name__)


@dataclass
class SyncOutcome:
    platform: str
    status: SyncStatus
    start_date: dt.date
    end_date: dt.date
    records_synced: int = 0
    discarded_empty: int = 0
    duration_ms: float = 0.0

    def to_read(self) -> SyncRunRead:
        return SyncRunRead(
            platform=self.platform,
            status=self.status,
            start_date=self.start_date,
            end_date=self.end_date,
            records_synced=self.records_synced,
            discarded_empty=self.discarded_empty,
            duration_ms=round(self.duration_ms, 2),
        )


def acquire_sync_lock(session: Session, user_id: int, platform: str) -> bool:
    """Mark (user, platform) as syncing. Returns False when a fresh lock is held."""
    now = utc_now()
    stale_before = now - timedelta(minutes=SYNC_SETTINGS["stale_lock_minutes"])

    result = session.execute(
        update(SyncLog)
        .where(
            SyncLog.user_id == user_id,
            SyncLog.platform == platform,
            or_(SyncLog.status != SyncStatus.SYNCING, SyncLog.started_at < stale_before),
        )
        .values(status=SyncStatus.SYNCING, started_at=now, error_message=None)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        session.commit()
        return True

    has_row = session.execute(
        select(exists().where(SyncLog.user_id == user_id, SyncLog.platform == platform))
    ).scalar()
    if has_row:
        session.rollback()
        return False

    try:
        session.execute(
            insert(SyncLog).values(
                user_id=user_id,
                platform=platform,
                status=SyncStatus.SYNCING,
                started_at=now,
                records_synced=0,
                consecutive_failures=0,
            )
        )
        session.commit()
    except IntegrityError:
        # lost the race to a concurrent first sync
        session.rollback()
        return False
    return True


def release_sync_lock(
    session: Session,
    user_id: int,
    platform: str,
    *,
    success: bool,
    records_synced: int = 0,
    error_message: Optional[str] = None,
    retryable: bool = False,
) -> Optional[SyncLog]:
    log = session.execute(
        select(SyncLog).where(SyncLog.user_id == user_id, SyncLog.platform == platform)
    ).scalar_one_or_none()
    if log is None:
        return None

    now = utc_now()
    if success:
        log.status = SyncStatus.DONE
        log.last_synced_at = now
        log.error_message = None
        log.records_synced = records_synced
        log.consecutive_failures = 0
        log.next_retry_at = None
    else:
        log.status = SyncStatus.ERROR
        log.error_message = error_message
        log.consecutive_failures = (log.consecutive_failures or 0) + 1
        log.next_retry_at = (
            now + timedelta(seconds=compute_backoff_seconds(log.consecutive_failures)) if retryable else None
        )
    session.commit()
    return log


def get_sync_date_range(session: Session, user_id: int, platform: str, today: Optional[dt.date] = None) -> Tuple[dt.date, dt.date]:
    """Inclusive (start, end): a long first window, a short one afterwards."""
    end = today or utc_now().date()
    has_data = session.execute(
        select(
            or_(
                exists().where(CampaignDailyAggregate.user_id == user_id, CampaignDailyAggregate.platform == platform),
                exists().where(CountryDailyAggregate.user_id == user_id, CountryDailyAggregate.platform == platform),
            )
        )
    ).scalar()
    days_back = SYNC_SETTINGS["incremental_days"] if has_data else SYNC_SETTINGS["initial_days"]
    return end - timedelta(days=days_back), end


async def run_platform_sync(
    session: Session,
    user_id: int,
    platform: str,
    *,
    credential_manager: Optional[CredentialManager] = None,
    fx_cache: Optional[ExchangeRateCache] = None,
    adapter: Optional[PlatformAdapter] = None,
    today: Optional[dt.date] = None,
) -> SyncOutcome:
    """Fetch, normalize and merge one platform's window for one user.

    Raises SyncInProgressError when another run holds the lock, and re-raises
    whatever failed the run after recording it in sync_log.
    """
    if is_custom_platform(platform):
        raise UnsupportedPlatformError(f"'{platform}' is a manual source and has nothing to sync")
    adapter = adapter or get_adapter(platform)
    connection = get_connection(session, user_id, platform)
    if connection is None:
        raise PlatformNotConnectedError(platform, "no connection on record")
    account_id = connection.account_id

    start_date, end_date = get_sync_date_range(session, user_id, platform, today)
    if not acquire_sync_lock(session, user_id, platform):
        raise SyncInProgressError(f"A {platform} sync is already running for user {user_id}")

    credential_manager = credential_manager or get_credential_manager()
    fx_cache = fx_cache or get_exchange_rate_cache()
    started = time.perf_counter()
    logger.info("Platform sync started", user_id=user_id, platform=platform, start_date=start_date.isoformat(), end_date=end_date.isoformat())

    try:
        credentials = await credential_manager.get_adapter_credentials(session, user_id, platform)
        result = await adapter.fetch_rows(credentials, account_id, start_date, end_date)

        rows = []
        for row in result.rows:
            if not (start_date <= row.date <= end_date):
                logger.warning("Dropping row outside sync window", platform=platform, campaign_id=row.campaign_id, date=row.date.isoformat())
                continue
            rows.append(row)
        rows = await fx_cache.normalize_rows(rows)

        summary = merge_rows(session, user_id, rows, MergeMode.OVERWRITE, window=(platform, start_date, end_date))
    except Exception as e:  # recorded in sync_log, then re-raised
        retryable = bool(getattr(e, "retryable", False))
        message = str(e) if isinstance(e, SpendSyncError) else f"{type(e).__name__}: {e}"
        session.rollback()
        release_sync_lock(session, user_id, platform, success=False, error_message=message, retryable=retryable)
        logger.error("Platform sync failed", user_id=user_id, platform=platform, error=message, retryable=retryable)
        raise

    duration_ms = (time.perf_counter() - started) * 1000
    release_sync_lock(session, user_id, platform, success=True, records_synced=summary.merged)
    log_performance("platform_sync", duration_ms, {
        "user_id": user_id,
        "platform": platform,
        "records_synced": summary.merged,
        "currency": result.currency,
    })
    return SyncOutcome(
        platform=platform,
        status=SyncStatus.DONE,
        start_date=start_date,
        end_date=end_date,
        records_synced=summary.merged,
        discarded_empty=summary.discarded_empty,
        duration_ms=duration_ms,
    )


async def sync_user(
    session: Session,
    user_id: int,
    *,
    credential_manager: Optional[CredentialManager] = None,
    fx_cache: Optional[ExchangeRateCache] = None,
    today: Optional[dt.date] = None,
) -> Dict[str, Union[SyncOutcome, str]]:
    """Sync every connected platform of a user. One platform failing does not stop the rest."""
    platforms = session.execute(
        select(ConnectedAccount.platform).where(ConnectedAccount.user_id == user_id).order_by(ConnectedAccount.platform)
    ).scalars().all()

    results: Dict[str, Union[SyncOutcome, str]] = {}
    for platform in platforms:
        if platform not in ADAPTERS:
            continue
        try:
            results[platform] = await run_platform_sync(
                session, user_id, platform,
                credential_manager=credential_manager, fx_cache=fx_cache, today=today,
            )
        except SpendSyncError as e:
            results[platform] = str(e)
    return results


def get_sync_status(session: Session, user_id: int) -> SyncStatusRead:
    logs = session.execute(select(SyncLog).where(SyncLog.user_id == user_id)).scalars().all()

    status = SyncStatusRead()
    for log in logs:
        status.platforms[log.platform] = PlatformSyncStatus(
            status=log.status,
            last_synced_at=log.last_synced_at,
            started_at=log.started_at,
            error=log.error_message,
            records_synced=log.records_synced or 0,
            consecutive_failures=log.consecutive_failures or 0,
            next_retry_at=log.next_retry_at,
        )
        if log.status == SyncStatus.SYNCING:
            status.is_syncing = True
        if log.last_synced_at and (status.last_synced_at is None or as_utc(log.last_synced_at) > as_utc(status.last_synced_at)):
            status.last_synced_at = log.last_synced_at
    return status


__all__ = [
    "SyncOutcome",
    "acquire_sync_lock",
    "release_sync_lock",
    "get_sync_date_range",
    "run_platform_sync",
    "sync_user",
    "get_sync_status",
]
