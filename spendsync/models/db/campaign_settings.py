from __future__ import annotations
"""SQLAlchemy model for per-campaign country attribution settings."""
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, Enum, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from spendsync.database import Base
from .enums import AttributionMode


class CampaignAttributionSetting(Base):
    __tablename__ = "campaign_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(64), nullable=False)
    campaign_id: Mapped[str] = mapped_column(String(255), nullable=False)
    mode: Mapped[AttributionMode] = mapped_column(
        Enum(AttributionMode, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AttributionMode.NONE,
    )
    # Only meaningful for mode=single; "" otherwise.
    country_code: Mapped[str] = mapped_column(String(2), nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "platform", "campaign_id", name="uq_campaign_settings_key"),
    )
