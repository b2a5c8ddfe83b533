from __future__ import annotations
"""SQLAlchemy models for the two aggregate stores written by the merge engine."""
import datetime as dt
from decimal import Decimal
from sqlalchemy import Integer, String, Date, DateTime, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from spendsync.database import Base


class CountryDailyAggregate(Base):
    """Spend/revenue per (user, country, day, platform)."""

    __tablename__ = "metrics_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    country_code: Mapped[str] = mapped_column(String(2), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(64), nullable=False)

    spend: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    impressions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    clicks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    purchases: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    cached_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "country_code", "date", "platform", name="uq_metrics_cache_key"),
    )


class CampaignDailyAggregate(Base):
    """Spend/revenue per (user, platform, campaign, country-or-unknown, day)."""

    __tablename__ = "campaign_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(64), nullable=False)
    campaign_id: Mapped[str] = mapped_column(String(255), nullable=False)
    # "" when the source has no geography
    country_code: Mapped[str] = mapped_column(String(2), nullable=False, default="")
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    campaign_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    spend: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    impressions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    clicks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    purchases: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "platform", "campaign_id", "country_code", "date",
            name="uq_campaign_metrics_key",
        ),
    )
