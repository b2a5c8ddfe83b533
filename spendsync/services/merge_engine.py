"""Aggregation & merge engine.

Writes normalized ``CanonicalRow`` batches into the two aggregate stores:

* ``metrics_cache``     keyed by (user, country, day, platform), known countries only
* ``campaign_metrics``  keyed by (user, platform, campaign, country-or-"", day), every row

Modes:
* ``overwrite``  replaces stored values (full re-syncs; idempotent)
* ``accumulate`` adds to stored values (webhook events; replays double-count)

Rows are first combined per key inside the batch, so several campaigns that
share a country/day never clobber each other under ``overwrite``. Each key is
written with one ``INSERT ... ON CONFLICT DO UPDATE`` statement and the whole
batch commits or rolls back as a unit.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from spendsync.config import MONEY_QUANT, UNKNOWN_COUNTRY
from spendsync.exceptions import MergeError
from spendsync.models.db.aggregates import CampaignDailyAggregate, CountryDailyAggregate
from spendsync.models.db.enums import MergeMode
from spendsync.models.schemas.rows import CanonicalRow, normalize_country
from spendsync.utils import get_logger, log_business_event
from spendsync.utils.time import utc_now

logger = get_logger(__name__)

METRIC_FIELDS = ("spend", "revenue", "impressions", "clicks", "purchases")

# (platform, start, end) inclusive
SyncWindow = Tuple[str, dt.date, dt.date]
CampaignKey = Tuple[str, str, str, dt.date]
CountryKey = Tuple[str, dt.date, str]


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


@dataclass
class MetricValues:
    spend: Decimal = Decimal("0")
    revenue: Decimal = Decimal("0")
    impressions: int = 0
    clicks: int = 0
    purchases: int = 0

    def add(self, other: "MetricValues | CanonicalRow") -> None:
        # money is rounded to cents per row, before summing
        self.spend += quantize_money(other.spend)
        self.revenue += quantize_money(other.revenue)
        self.impressions += other.impressions
        self.clicks += other.clicks
        self.purchases += other.purchases

    def as_columns(self) -> Dict[str, object]:
        return {
            "spend": quantize_money(self.spend),
            "revenue": quantize_money(self.revenue),
            "impressions": self.impressions,
            "clicks": self.clicks,
            "purchases": self.purchases,
        }

    def is_empty(self) -> bool:
        return not (self.spend or self.revenue or self.impressions or self.clicks or self.purchases)


@dataclass
class MergeSummary:
    mode: MergeMode
    received: int = 0
    discarded_empty: int = 0
    campaign_keys: int = 0
    country_keys: int = 0
    deleted_campaign_rows: int = 0
    deleted_country_rows: int = 0
    platforms: set[str] = field(default_factory=set)

    @property
    def merged(self) -> int:
        return self.received - self.discarded_empty

    def as_dict(self) -> Dict[str, object]:
        return {
            "mode": self.mode.value,
            "received": self.received,
            "merged": self.merged,
            "discarded_empty": self.discarded_empty,
            "campaign_keys": self.campaign_keys,
            "country_keys": self.country_keys,
            "deleted_campaign_rows": self.deleted_campaign_rows,
            "deleted_country_rows": self.deleted_country_rows,
        }


def _insert(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise MergeError(f"Upsert not supported for database dialect '{dialect}'")


def _upsert(session: Session, model, index_elements: list[str], values: Dict[str, object], mode: MergeMode, touch: Optional[str] = None) -> None:
    insert = _insert(session)
    stmt = insert(model).values(**values)
    if mode == MergeMode.ACCUMULATE:
        set_ = {name: getattr(model, name) + getattr(stmt.excluded, name) for name in METRIC_FIELDS}
    else:
        set_ = {name: getattr(stmt.excluded, name) for name in METRIC_FIELDS}
    if "campaign_name" in values and values["campaign_name"] is not None:
        set_["campaign_name"] = stmt.excluded.campaign_name
    if touch:
        set_[touch] = getattr(stmt.excluded, touch)
    session.execute(stmt.on_conflict_do_update(index_elements=index_elements, set_=set_))


def _upsert_campaign(session: Session, user_id: int, key: CampaignKey, values: MetricValues, campaign_name: Optional[str], mode: MergeMode) -> None:
    platform, campaign_id, country, day = key
    _upsert(
        session,
        CampaignDailyAggregate,
        ["user_id", "platform", "campaign_id", "country_code", "date"],
        {
            "user_id": user_id,
            "platform": platform,
            "campaign_id": campaign_id,
            "country_code": country,
            "date": day,
            "campaign_name": campaign_name,
            **values.as_columns(),
        },
        mode,
    )


def _upsert_country(session: Session, user_id: int, key: CountryKey, values: MetricValues, mode: MergeMode) -> None:
    country, day, platform = key
    _upsert(
        session,
        CountryDailyAggregate,
        ["user_id", "country_code", "date", "platform"],
        {
            "user_id": user_id,
            "country_code": country,
            "date": day,
            "platform": platform,
            "cached_at": utc_now(),
            **values.as_columns(),
        },
        mode,
        touch="cached_at",
    )


def _validate(rows: Iterable[CanonicalRow], window: Optional[SyncWindow], mode: MergeMode) -> None:
    if window is not None:
        if mode != MergeMode.OVERWRITE:
            raise ValueError("A replacement window is only valid with overwrite mode")
        if window[1] > window[2]:
            raise ValueError("Replacement window start is after its end")
    for row in rows:
        if not row.is_normalized:
            raise ValueError(
                f"Row for {row.platform}/{row.campaign_id} on {row.date} is in {row.currency_code}; "
                "convert to the normalized currency before merging"
            )
        if window is not None:
            platform, start, end = window
            if row.platform != platform or not (start <= row.date <= end):
                raise ValueError(f"Row for {row.platform} on {row.date} lies outside the replacement window")


def _combine(rows: Iterable[CanonicalRow]) -> Tuple[Dict[CampaignKey, MetricValues], Dict[CampaignKey, Optional[str]], Dict[CountryKey, MetricValues]]:
    campaigns: Dict[CampaignKey, MetricValues] = {}
    names: Dict[CampaignKey, Optional[str]] = {}
    countries: Dict[CountryKey, MetricValues] = {}
    for row in rows:
        campaign_key = (row.platform, row.campaign_id, row.country_key, row.date)
        campaigns.setdefault(campaign_key, MetricValues()).add(row)
        if row.campaign_name:
            names[campaign_key] = row.campaign_name
        else:
            names.setdefault(campaign_key, None)
        if row.country_key != UNKNOWN_COUNTRY:
            countries.setdefault((row.country_key, row.date, row.platform), MetricValues()).add(row)
    return campaigns, names, countries


def _delete_window(session: Session, user_id: int, window: SyncWindow) -> Tuple[int, int]:
    platform, start, end = window
    campaign_result = session.execute(
        delete(CampaignDailyAggregate).where(
            CampaignDailyAggregate.user_id == user_id,
            CampaignDailyAggregate.platform == platform,
            CampaignDailyAggregate.date >= start,
            CampaignDailyAggregate.date <= end,
        )
    )
    country_result = session.execute(
        delete(CountryDailyAggregate).where(
            CountryDailyAggregate.user_id == user_id,
            CountryDailyAggregate.platform == platform,
            CountryDailyAggregate.date >= start,
            CountryDailyAggregate.date <= end,
        )
    )
    return campaign_result.rowcount or 0, country_result.rowcount or 0


def merge_rows(
    session: Session,
    user_id: int,
    rows: Iterable[CanonicalRow],
    mode: MergeMode,
    *,
    window: Optional[SyncWindow] = None,
) -> MergeSummary:
    """Merge one batch into both aggregates in a single transaction.

    Raises ValueError (before any write) for rows not yet converted to the
    normalized currency, and MergeError when the transaction fails; in the
    latter case nothing of the batch is persisted.
    """
    rows = list(rows)
    mode = MergeMode(mode)
    _validate(rows, window, mode)

    summary = MergeSummary(mode=mode, received=len(rows))
    kept = [row for row in rows if not row.is_empty()]
    summary.discarded_empty = len(rows) - len(kept)
    campaigns, names, countries = _combine(kept)
    summary.platforms = {row.platform for row in kept}

    try:
        if window is not None:
            summary.deleted_campaign_rows, summary.deleted_country_rows = _delete_window(session, user_id, window)
        for key, values in campaigns.items():
            _upsert_campaign(session, user_id, key, values, names.get(key), mode)
        for key, values in countries.items():
            _upsert_country(session, user_id, key, values, mode)
        session.commit()
    except Exception as e:  # any failure aborts the whole batch
        session.rollback()
        logger.error("Merge failed, batch rolled back", user_id=user_id, mode=mode.value, rows=len(rows), error=str(e))
        if isinstance(e, MergeError):
            raise
        raise MergeError(f"Merge of {len(rows)} rows failed: {e}") from e

    summary.campaign_keys = len(campaigns)
    summary.country_keys = len(countries)
    log_business_event("aggregates_merged", {"platforms": sorted(summary.platforms), **summary.as_dict()}, user_id=user_id)
    return summary


def _recompute_country_key(session: Session, user_id: int, platform: str, country: str, day: dt.date) -> bool:
    """Rebuild one metrics_cache key from campaign rows. Returns False when it was removed."""
    totals = session.execute(
        select(
            func.coalesce(func.sum(CampaignDailyAggregate.spend), 0),
            func.coalesce(func.sum(CampaignDailyAggregate.revenue), 0),
            func.coalesce(func.sum(CampaignDailyAggregate.impressions), 0),
            func.coalesce(func.sum(CampaignDailyAggregate.clicks), 0),
            func.coalesce(func.sum(CampaignDailyAggregate.purchases), 0),
            func.count(CampaignDailyAggregate.id),
        ).where(
            CampaignDailyAggregate.user_id == user_id,
            CampaignDailyAggregate.platform == platform,
            CampaignDailyAggregate.country_code == country,
            CampaignDailyAggregate.date == day,
        )
    ).one()
    spend, revenue, impressions, clicks, purchases, count = totals
    values = MetricValues(
        spend=Decimal(str(spend)),
        revenue=Decimal(str(revenue)),
        impressions=int(impressions),
        clicks=int(clicks),
        purchases=int(purchases),
    )
    if not count or values.is_empty():
        session.execute(
            delete(CountryDailyAggregate).where(
                CountryDailyAggregate.user_id == user_id,
                CountryDailyAggregate.platform == platform,
                CountryDailyAggregate.country_code == country,
                CountryDailyAggregate.date == day,
            )
        )
        return False
    _upsert_country(session, user_id, (country, day, platform), values, MergeMode.OVERWRITE)
    return True


def _delete_campaign_key(session: Session, user_id: int, platform: str, campaign_id: str, country: str, day: dt.date) -> int:
    result = session.execute(
        delete(CampaignDailyAggregate).where(
            CampaignDailyAggregate.user_id == user_id,
            CampaignDailyAggregate.platform == platform,
            CampaignDailyAggregate.campaign_id == campaign_id,
            CampaignDailyAggregate.country_code == country,
            CampaignDailyAggregate.date == day,
        )
    )
    return result.rowcount or 0


def merge_manual_entry(session: Session, user_id: int, row: CanonicalRow) -> MergeSummary:
    """Overwrite exactly one campaign key, then rebuild the matching country key.

    An entry whose values are all zero removes the key instead.
    """
    _validate([row], None, MergeMode.OVERWRITE)
    summary = MergeSummary(mode=MergeMode.OVERWRITE, received=1, platforms={row.platform})
    key: CampaignKey = (row.platform, row.campaign_id, row.country_key, row.date)

    try:
        if row.is_empty():
            summary.discarded_empty = 1
            summary.deleted_campaign_rows = _delete_campaign_key(session, user_id, *key)
        else:
            values = MetricValues()
            values.add(row)
            _upsert_campaign(session, user_id, key, values, row.campaign_name, MergeMode.OVERWRITE)
            summary.campaign_keys = 1
        if row.country_key != UNKNOWN_COUNTRY:
            if _recompute_country_key(session, user_id, row.platform, row.country_key, row.date):
                summary.country_keys = 1
            else:
                summary.deleted_country_rows = 1
        session.commit()
    except Exception as e:  # any failure aborts the whole entry
        session.rollback()
        logger.error("Manual entry merge failed", user_id=user_id, platform=row.platform, campaign_id=row.campaign_id, error=str(e))
        raise MergeError(f"Manual entry merge failed: {e}") from e

    log_business_event("manual_entry_merged", {
        "platform": row.platform,
        "campaign_id": row.campaign_id,
        "country_code": row.country_key,
        "date": row.date.isoformat(),
    }, user_id=user_id)
    return summary


def delete_manual_entry(
    session: Session,
    user_id: int,
    platform: str,
    campaign_id: str,
    country_code: Optional[str],
    day: dt.date,
) -> bool:
    """Remove one campaign key and rebuild its country key. Returns False when nothing matched."""
    country = normalize_country(country_code)
    try:
        deleted = _delete_campaign_key(session, user_id, platform, campaign_id, country, day)
        if deleted and country != UNKNOWN_COUNTRY:
            _recompute_country_key(session, user_id, platform, country, day)
        session.commit()
    except Exception as e:  # any failure aborts the whole entry
        session.rollback()
        logger.error("Manual entry delete failed", user_id=user_id, platform=platform, campaign_id=campaign_id, error=str(e))
        raise MergeError(f"Manual entry delete failed: {e}") from e

    if deleted:
        log_business_event("manual_entry_deleted", {
            "platform": platform,
            "campaign_id": campaign_id,
            "country_code": country,
            "date": day.isoformat(),
        }, user_id=user_id)
    return bool(deleted)


def move_manual_entry(session: Session, user_id: int, entry_id: int, row: CanonicalRow) -> bool:
    """Rewrite stored entry ``entry_id`` as ``row``. Its campaign, country and day may change.

    The country keys before and after the edit are both rebuilt in the same
    transaction; an all-zero ``row`` removes the entry. Returns False when the
    entry does not exist. Raises ValueError when the new key belongs to
    another entry.
    """
    _validate([row], None, MergeMode.OVERWRITE)
    entry = session.execute(
        select(CampaignDailyAggregate).where(
            CampaignDailyAggregate.id == entry_id,
            CampaignDailyAggregate.user_id == user_id,
            CampaignDailyAggregate.platform == row.platform,
        )
    ).scalar_one_or_none()
    if entry is None:
        return False

    old_key = (entry.country_code, entry.date)
    new_key = (row.country_key, row.date)
    if (entry.campaign_id, *old_key) != (row.campaign_id, *new_key):
        taken = session.execute(
            select(CampaignDailyAggregate.id).where(
                CampaignDailyAggregate.user_id == user_id,
                CampaignDailyAggregate.platform == row.platform,
                CampaignDailyAggregate.campaign_id == row.campaign_id,
                CampaignDailyAggregate.country_code == row.country_key,
                CampaignDailyAggregate.date == row.date,
            )
        ).first()
        if taken is not None:
            raise ValueError(
                f"Campaign '{row.campaign_id}' already has an entry on {row.date.isoformat()} "
                f"for country '{row.country_key or '-'}'"
            )

    try:
        if row.is_empty():
            session.delete(entry)
        else:
            values = MetricValues()
            values.add(row)
            entry.campaign_id = row.campaign_id
            entry.country_code = row.country_key
            entry.date = row.date
            if row.campaign_name:
                entry.campaign_name = row.campaign_name
            for name, value in values.as_columns().items():
                setattr(entry, name, value)
        session.flush()
        for country, day in {old_key, new_key}:
            if country != UNKNOWN_COUNTRY:
                _recompute_country_key(session, user_id, row.platform, country, day)
        session.commit()
    except Exception as e:  # any failure aborts the whole edit
        session.rollback()
        logger.error("Manual entry update failed", user_id=user_id, platform=row.platform, entry_id=entry_id, error=str(e))
        raise MergeError(f"Manual entry update failed: {e}") from e

    log_business_event("manual_entry_updated", {
        "platform": row.platform,
        "entry_id": entry_id,
        "from": {"country_code": old_key[0], "date": old_key[1].isoformat()},
        "to": {"country_code": new_key[0], "date": new_key[1].isoformat()},
        "removed": row.is_empty(),
    }, user_id=user_id)
    return True


def purge_platform(session: Session, user_id: int, platform: str) -> Tuple[int, int]:
    """Delete every campaign and country row of ``platform`` for one user.

    Returns (campaign rows, country rows) removed.
    """
    try:
        campaign_rows = session.execute(
            delete(CampaignDailyAggregate).where(
                CampaignDailyAggregate.user_id == user_id,
                CampaignDailyAggregate.platform == platform,
            )
        ).rowcount or 0
        country_rows = session.execute(
            delete(CountryDailyAggregate).where(
                CountryDailyAggregate.user_id == user_id,
                CountryDailyAggregate.platform == platform,
            )
        ).rowcount or 0
        session.commit()
    except Exception as e:  # both stores or neither
        session.rollback()
        logger.error("Platform purge failed", user_id=user_id, platform=platform, error=str(e))
        raise MergeError(f"Purge of {platform} failed: {e}") from e

    log_business_event("platform_purged", {
        "platform": platform,
        "campaign_rows": campaign_rows,
        "country_rows": country_rows,
    }, user_id=user_id)
    return campaign_rows, country_rows


__all__ = [
    "MergeSummary",
    "MetricValues",
    "merge_rows",
    "merge_manual_entry",
    "delete_manual_entry",
    "move_manual_entry",
    "purge_platform",
    "quantize_money",
]
