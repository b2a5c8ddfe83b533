"""
Pydantic schemas for campaign attribution settings and country rollups.
"""
import datetime as dt
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator

from spendsync.models.db.enums import AttributionMode
from .base import MetricTotals
from .rows import normalize_country


class AttributionSettingUpdate(BaseModel):
    """Body of the attribution update endpoint."""
    mode: AttributionMode
    country_code: Optional[str] = Field(None, description="Required when mode is 'single'")

    model_config = ConfigDict(json_schema_extra={
        "example": {"mode": "single", "country_code": "DE"}
    })

    @model_validator(mode="after")
    def _single_needs_country(self) -> "AttributionSettingUpdate":
        if self.mode == AttributionMode.SINGLE and not normalize_country(self.country_code):
            raise ValueError("country_code must be a two-letter code when mode is 'single'")
        return self


class AttributionSettingRead(BaseModel):
    platform: str
    campaign_id: str
    mode: AttributionMode
    country_code: str = ""


class CampaignSummary(BaseModel):
    """Per-campaign totals as shown next to its attribution setting."""
    campaign_id: str
    campaign_name: Optional[str] = None
    totals: MetricTotals
    entry_count: int
    first_date: dt.date
    last_date: dt.date
    mode: AttributionMode = AttributionMode.NONE
    attributed_country_code: str = ""


class CountryContributionRead(BaseModel):
    country_code: str
    date: dt.date
    platform: str
    totals: MetricTotals


class NeedsDetailRead(BaseModel):
    platform: str
    campaign_id: str
    date: dt.date
    totals: MetricTotals


class RollupRead(BaseModel):
    contributions: List[CountryContributionRead] = Field(default_factory=list)
    needs_detail: List[NeedsDetailRead] = Field(default_factory=list)
