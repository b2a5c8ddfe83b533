"""Manual and imported campaign entries.

The merge engine only offers a single-key overwrite for these. The "add to
what is stored" variant used by imports is computed here, on the caller side:
the stored values are read, summed with the new ones, and the sum is written
as the overwrite. That way the caller can show the post-merge totals first.
"""
from __future__ import annotations

import datetime as dt
from typing import Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from spendsync.config import NORMALIZED_CURRENCY
from spendsync.models.db.aggregates import CampaignDailyAggregate
from spendsync.models.db.enums import is_custom_platform
from spendsync.models.schemas.entries import (
    ManualEntryCreate,
    ManualEntryKey,
    ManualEntryPage,
    ManualEntryRead,
    ManualEntryUpdate,
)
from spendsync.models.schemas.rows import CanonicalRow, normalize_country
from spendsync.services.currency import ExchangeRateCache, get_exchange_rate_cache
from spendsync.services.merge_engine import (
    MergeSummary,
    delete_manual_entry,
    merge_manual_entry,
    move_manual_entry,
    purge_platform,
)

MAX_PAGE_SIZE = 100


def get_stored_entry(
    session: Session,
    user_id: int,
    platform: str,
    campaign_id: str,
    country_code: Optional[str],
    day: dt.date,
) -> Optional[CampaignDailyAggregate]:
    return session.execute(
        select(CampaignDailyAggregate).where(
            CampaignDailyAggregate.user_id == user_id,
            CampaignDailyAggregate.platform == platform,
            CampaignDailyAggregate.campaign_id == campaign_id,
            CampaignDailyAggregate.country_code == normalize_country(country_code),
            CampaignDailyAggregate.date == day,
        )
    ).scalar_one_or_none()


async def build_entry_row(
    session: Session,
    user_id: int,
    entry: ManualEntryCreate,
    fx_cache: Optional[ExchangeRateCache] = None,
) -> CanonicalRow:
    """The row that will be written for ``entry``: converted to USD, pre-summed for 'add'."""
    row = CanonicalRow(
        platform=entry.platform,
        campaign_id=entry.campaign_id,
        country_code=entry.country_code,
        date=entry.date,
        spend=entry.spend,
        revenue=entry.revenue,
        impressions=entry.impressions,
        clicks=entry.clicks,
        purchases=entry.purchases,
        currency_code=entry.currency,
    )
    row = await (fx_cache or get_exchange_rate_cache()).normalize_row(row)

    if entry.on_conflict == "add":
        stored = get_stored_entry(session, user_id, row.platform, row.campaign_id, row.country_code, row.date)
        if stored is not None:
            row = row.model_copy(update={
                "spend": row.spend + stored.spend,
                "revenue": row.revenue + stored.revenue,
                "impressions": row.impressions + stored.impressions,
                "clicks": row.clicks + stored.clicks,
                "purchases": row.purchases + stored.purchases,
                "campaign_name": row.campaign_name or stored.campaign_name,
            })
    return row


async def save_manual_entry(
    session: Session,
    user_id: int,
    entry: ManualEntryCreate,
    fx_cache: Optional[ExchangeRateCache] = None,
) -> MergeSummary:
    row = await build_entry_row(session, user_id, entry, fx_cache)
    return merge_manual_entry(session, user_id, row)


def remove_manual_entry(session: Session, user_id: int, key: ManualEntryKey) -> bool:
    return delete_manual_entry(session, user_id, key.platform, key.campaign_id, key.country_code, key.date)


def list_entries(
    session: Session,
    user_id: int,
    platform: str,
    page: int = 1,
    limit: int = 20,
    day: Optional[dt.date] = None,
    campaign_id: Optional[str] = None,
) -> ManualEntryPage:
    """One page of stored entries, newest day first, then by campaign."""
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    filters = [
        CampaignDailyAggregate.user_id == user_id,
        CampaignDailyAggregate.platform == platform,
    ]
    if day is not None:
        filters.append(CampaignDailyAggregate.date == day)
    if campaign_id:
        filters.append(CampaignDailyAggregate.campaign_id == campaign_id)

    total = session.execute(select(func.count(CampaignDailyAggregate.id)).where(*filters)).scalar_one()
    rows = session.execute(
        select(CampaignDailyAggregate)
        .where(*filters)
        .order_by(CampaignDailyAggregate.date.desc(), CampaignDailyAggregate.campaign_id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()

    return ManualEntryPage(
        entries=[ManualEntryRead.model_validate(row) for row in rows],
        total=total,
        page=page,
        limit=limit,
    )


async def update_manual_entry(
    session: Session,
    user_id: int,
    platform: str,
    entry_id: int,
    patch: ManualEntryUpdate,
    fx_cache: Optional[ExchangeRateCache] = None,
) -> Tuple[bool, Optional[ManualEntryRead]]:
    """Apply ``patch`` to stored entry ``entry_id``.

    Returns (found, entry after the edit). The entry is None when the edit
    left every value at zero and the key was removed.
    """
    changed = patch.model_fields_set - {"currency"}
    if not changed:
        raise ValueError("No fields to update")

    stored = session.execute(
        select(CampaignDailyAggregate).where(
            CampaignDailyAggregate.id == entry_id,
            CampaignDailyAggregate.user_id == user_id,
            CampaignDailyAggregate.platform == platform,
        )
    ).scalar_one_or_none()
    if stored is None:
        return False, None

    cache = fx_cache or get_exchange_rate_cache()
    values = {
        "campaign_id": stored.campaign_id,
        "country_code": stored.country_code,
        "date": stored.date,
        "spend": stored.spend,
        "revenue": stored.revenue,
        "impressions": stored.impressions,
        "clicks": stored.clicks,
        "purchases": stored.purchases,
    }
    for field in changed:
        value = getattr(patch, field)
        if field in ("spend", "revenue"):
            value = await cache.convert(value or 0, patch.currency)
        elif value is None and field != "country_code":
            continue
        values[field] = value

    row = CanonicalRow(
        platform=platform,
        campaign_name=stored.campaign_name,
        currency_code=NORMALIZED_CURRENCY,
        **values,
    )
    if not move_manual_entry(session, user_id, entry_id, row):
        return False, None

    entry = session.get(CampaignDailyAggregate, entry_id)
    return True, ManualEntryRead.model_validate(entry) if entry is not None else None


def delete_source(session: Session, user_id: int, platform: str) -> Tuple[int, int]:
    """Drop everything stored for a custom source. Connected platforms are disconnected instead."""
    if not is_custom_platform(platform):
        raise ValueError(f"Only custom sources can be purged, not '{platform}'")
    return purge_platform(session, user_id, platform)


__all__ = [
    "get_stored_entry",
    "build_entry_row",
    "save_manual_entry",
    "remove_manual_entry",
    "list_entries",
    "update_manual_entry",
    "delete_source",
    "MAX_PAGE_SIZE",
]
