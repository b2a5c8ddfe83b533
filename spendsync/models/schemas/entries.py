"""
Pydantic schemas for manually entered / imported campaign entries.
"""
import datetime as dt
from decimal import Decimal
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict


class ManualEntryCreate(BaseModel):
    """One user-edited record. Money is entered in ``currency`` and normalized on write."""
    platform: str = Field(min_length=1, description="Usually a custom source tag, e.g. 'custom_3'")
    campaign_id: str = Field(min_length=1)
    country_code: Optional[str] = None
    date: dt.date
    spend: Decimal = Field(default=Decimal("0"), ge=0)
    revenue: Decimal = Field(default=Decimal("0"), ge=0)
    impressions: int = Field(default=0, ge=0)
    clicks: int = Field(default=0, ge=0)
    purchases: int = Field(default=0, ge=0)
    currency: str = "USD"
    # "replace" overwrites the key; "add" pre-sums with the stored values first.
    on_conflict: Literal["replace", "add"] = "replace"

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "platform": "custom_3",
            "campaign_id": "Podcast sponsorship",
            "country_code": "NO",
            "date": "2026-02-01",
            "spend": "250.00",
            "currency": "NOK",
        }
    })


class ManualEntryKey(BaseModel):
    platform: str
    campaign_id: str
    country_code: Optional[str] = None
    date: dt.date


class ManualEntryUpdate(BaseModel):
    """Partial edit of a stored entry. Only the fields sent are changed.

    Sending ``country_code: null`` clears the country. Money fields are in
    ``currency`` and converted on write; untouched money stays as stored.
    """
    campaign_id: Optional[str] = Field(None, min_length=1)
    country_code: Optional[str] = None
    date: Optional[dt.date] = None
    spend: Optional[Decimal] = Field(None, ge=0)
    revenue: Optional[Decimal] = Field(None, ge=0)
    impressions: Optional[int] = Field(None, ge=0)
    clicks: Optional[int] = Field(None, ge=0)
    purchases: Optional[int] = Field(None, ge=0)
    currency: str = "USD"

    model_config = ConfigDict(json_schema_extra={
        "example": {"country_code": "SE", "spend": "120.00", "currency": "SEK"}
    })


class ManualEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    campaign_id: str
    campaign_name: Optional[str] = None
    country_code: str = ""
    date: dt.date
    spend: float
    revenue: float
    impressions: int
    clicks: int
    purchases: int


class ManualEntryPage(BaseModel):
    entries: List[ManualEntryRead] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20
