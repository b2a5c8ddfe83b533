"""Campaign attribution resolver.

Maps campaign-level rows onto country-level contributions according to each
campaign's ``CampaignAttributionSetting``:

* ``none``     (default, also when no setting exists): no country contribution
* ``single``   every row of the campaign counts fully for the configured country
* ``multiple`` each row counts for its own country; rows without one are
               reported as needing detail and left out

The rollup is derived on every call from current settings plus stored
campaign rows. Nothing here writes to the aggregate tables.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from spendsync.config import UNKNOWN_COUNTRY
from spendsync.models.db.aggregates import CampaignDailyAggregate
from spendsync.models.db.campaign_settings import CampaignAttributionSetting
from spendsync.models.db.enums import AttributionMode
from spendsync.models.schemas.attribution import AttributionSettingRead, CampaignSummary
from spendsync.models.schemas.base import MetricTotals
from spendsync.models.schemas.rows import normalize_country
from spendsync.services.merge_engine import MetricValues
from spendsync.utils import get_logger, log_business_event

logger = get_logger(__name__)


class CampaignRowLike(Protocol):
    platform: str
    campaign_id: str
    country_code: Optional[str]
    date: dt.date
    spend: object
    revenue: object
    impressions: int
    clicks: int
    purchases: int


@dataclass
class CountryContribution:
    country_code: str
    date: dt.date
    platform: str
    totals: MetricValues = field(default_factory=MetricValues)


@dataclass
class NeedsDetailEntry:
    platform: str
    campaign_id: str
    date: dt.date
    totals: MetricValues = field(default_factory=MetricValues)


@dataclass
class RollupResult:
    contributions: List[CountryContribution] = field(default_factory=list)
    needs_detail: List[NeedsDetailEntry] = field(default_factory=list)


def _values(row: CampaignRowLike) -> MetricValues:
    values = MetricValues()
    values.add(row)
    return values


def totals_of(values: MetricValues) -> MetricTotals:
    return MetricTotals(
        spend=float(values.spend),
        revenue=float(values.revenue),
        impressions=values.impressions,
        clicks=values.clicks,
        purchases=values.purchases,
    )


def resolve_contributions(
    mode: AttributionMode,
    country_code: Optional[str],
    rows: Iterable[CampaignRowLike],
) -> Tuple[List[CountryContribution], List[NeedsDetailEntry]]:
    """Country contributions and needs-detail entries for one campaign's rows."""
    mode = AttributionMode(mode)
    if mode == AttributionMode.NONE:
        return [], []

    target = normalize_country(country_code)
    if mode == AttributionMode.SINGLE and target == UNKNOWN_COUNTRY:
        logger.warning("Single attribution without a country, treating as none")
        return [], []

    contributions: Dict[Tuple[str, dt.date, str], CountryContribution] = {}
    needs_detail: List[NeedsDetailEntry] = []
    for row in rows:
        if mode == AttributionMode.SINGLE:
            country = target
        else:
            country = normalize_country(row.country_code)
            if country == UNKNOWN_COUNTRY:
                needs_detail.append(NeedsDetailEntry(row.platform, row.campaign_id, row.date, _values(row)))
                continue
        key = (country, row.date, row.platform)
        if key not in contributions:
            contributions[key] = CountryContribution(country, row.date, row.platform)
        contributions[key].totals.add(row)
    return list(contributions.values()), needs_detail


def _settings_by_campaign(session: Session, user_id: int, platform: Optional[str]) -> Dict[Tuple[str, str], CampaignAttributionSetting]:
    stmt = select(CampaignAttributionSetting).where(CampaignAttributionSetting.user_id == user_id)
    if platform:
        stmt = stmt.where(CampaignAttributionSetting.platform == platform)
    return {(s.platform, s.campaign_id): s for s in session.execute(stmt).scalars()}


def compute_country_rollup(
    session: Session,
    user_id: int,
    platform: Optional[str] = None,
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
) -> RollupResult:
    settings = {
        key: setting
        for key, setting in _settings_by_campaign(session, user_id, platform).items()
        if setting.mode != AttributionMode.NONE
    }
    if not settings:
        return RollupResult()

    stmt = select(CampaignDailyAggregate).where(CampaignDailyAggregate.user_id == user_id)
    if platform:
        stmt = stmt.where(CampaignDailyAggregate.platform == platform)
    if start:
        stmt = stmt.where(CampaignDailyAggregate.date >= start)
    if end:
        stmt = stmt.where(CampaignDailyAggregate.date <= end)

    rows_by_campaign: Dict[Tuple[str, str], List[CampaignDailyAggregate]] = {}
    for row in session.execute(stmt).scalars():
        key = (row.platform, row.campaign_id)
        if key in settings:
            rows_by_campaign.setdefault(key, []).append(row)

    merged: Dict[Tuple[str, dt.date, str], CountryContribution] = {}
    result = RollupResult()
    for key, rows in rows_by_campaign.items():
        setting = settings[key]
        contributions, needs_detail = resolve_contributions(setting.mode, setting.country_code, rows)
        for contribution in contributions:
            merge_key = (contribution.country_code, contribution.date, contribution.platform)
            if merge_key in merged:
                merged[merge_key].totals.add(contribution.totals)
            else:
                merged[merge_key] = contribution
        result.needs_detail.extend(needs_detail)

    result.contributions = sorted(merged.values(), key=lambda c: (c.date, c.platform, c.country_code))
    result.needs_detail.sort(key=lambda n: (n.date, n.platform, n.campaign_id))
    return result


def get_setting(session: Session, user_id: int, platform: str, campaign_id: str) -> AttributionSettingRead:
    setting = session.execute(
        select(CampaignAttributionSetting).where(
            CampaignAttributionSetting.user_id == user_id,
            CampaignAttributionSetting.platform == platform,
            CampaignAttributionSetting.campaign_id == campaign_id,
        )
    ).scalar_one_or_none()
    if setting is None:
        return AttributionSettingRead(platform=platform, campaign_id=campaign_id, mode=AttributionMode.NONE)
    return AttributionSettingRead(
        platform=platform,
        campaign_id=campaign_id,
        mode=setting.mode,
        country_code=setting.country_code or "",
    )


def set_setting(
    session: Session,
    user_id: int,
    platform: str,
    campaign_id: str,
    mode: AttributionMode,
    country_code: Optional[str] = None,
) -> AttributionSettingRead:
    """Create or replace the attribution setting of one campaign.

    Raises ValueError for ``single`` without a two-letter country. Stored
    campaign rows are left untouched; only future rollups change.
    """
    mode = AttributionMode(mode)
    country = normalize_country(country_code) if mode == AttributionMode.SINGLE else UNKNOWN_COUNTRY
    if mode == AttributionMode.SINGLE and country == UNKNOWN_COUNTRY:
        raise ValueError("country_code must be a two-letter code when mode is 'single'")

    setting = session.execute(
        select(CampaignAttributionSetting).where(
            CampaignAttributionSetting.user_id == user_id,
            CampaignAttributionSetting.platform == platform,
            CampaignAttributionSetting.campaign_id == campaign_id,
        )
    ).scalar_one_or_none()
    previous = AttributionMode(setting.mode) if setting is not None else AttributionMode.NONE
    if setting is None:
        setting = CampaignAttributionSetting(user_id=user_id, platform=platform, campaign_id=campaign_id)
        session.add(setting)
    setting.mode = mode
    setting.country_code = country

    try:
        session.commit()
    except Exception:
        session.rollback()
        raise

    log_business_event("attribution_changed", {
        "platform": platform,
        "campaign_id": campaign_id,
        "from_mode": previous.value,
        "to_mode": mode.value,
        "country_code": country,
    }, user_id=user_id)
    return AttributionSettingRead(platform=platform, campaign_id=campaign_id, mode=mode, country_code=country)


def list_campaigns(session: Session, user_id: int, platform: str) -> List[CampaignSummary]:
    """Per-campaign totals for one platform with the effective attribution mode."""
    stmt = (
        select(
            CampaignDailyAggregate.campaign_id,
            func.max(CampaignDailyAggregate.campaign_name),
            func.coalesce(func.sum(CampaignDailyAggregate.spend), 0),
            func.coalesce(func.sum(CampaignDailyAggregate.revenue), 0),
            func.coalesce(func.sum(CampaignDailyAggregate.impressions), 0),
            func.coalesce(func.sum(CampaignDailyAggregate.clicks), 0),
            func.coalesce(func.sum(CampaignDailyAggregate.purchases), 0),
            func.count(CampaignDailyAggregate.id),
            func.min(CampaignDailyAggregate.date),
            func.max(CampaignDailyAggregate.date),
        )
        .where(CampaignDailyAggregate.user_id == user_id, CampaignDailyAggregate.platform == platform)
        .group_by(CampaignDailyAggregate.campaign_id)
        .order_by(CampaignDailyAggregate.campaign_id)
    )
    settings = _settings_by_campaign(session, user_id, platform)

    summaries: List[CampaignSummary] = []
    for campaign_id, name, spend, revenue, impressions, clicks, purchases, count, first, last in session.execute(stmt):
        setting = settings.get((platform, campaign_id))
        summaries.append(CampaignSummary(
            campaign_id=campaign_id,
            campaign_name=name,
            totals=MetricTotals(
                spend=round(float(spend), 2),
                revenue=round(float(revenue), 2),
                impressions=int(impressions),
                clicks=int(clicks),
                purchases=int(purchases),
            ),
            entry_count=int(count),
            first_date=first,
            last_date=last,
            mode=setting.mode if setting else AttributionMode.NONE,
            attributed_country_code=setting.country_code if setting else "",
        ))
    return summaries


__all__ = [
    "CountryContribution",
    "NeedsDetailEntry",
    "RollupResult",
    "resolve_contributions",
    "compute_country_rollup",
    "get_setting",
    "set_setting",
    "list_campaigns",
    "totals_of",
]
