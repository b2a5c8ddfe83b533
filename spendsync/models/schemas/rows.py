"""
Canonical row schema: the provider-agnostic unit every adapter produces.
"""
import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from spendsync.config import NORMALIZED_CURRENCY, UNKNOWN_COUNTRY


def normalize_country(value: Optional[str]) -> str:
    """Upper-case and cut to two letters; anything else is the unknown sentinel."""
    code = (value or "").strip().upper()[:2]
    if len(code) != 2 or not code.isalpha():
        return UNKNOWN_COUNTRY
    return code


class CanonicalRow(BaseModel):
    """
    Spend/revenue/engagement for one campaign, one day and one (possibly
    absent) country, in the currency named by ``currency_code``.
    """
    model_config = ConfigDict(frozen=True)

    platform: str = Field(min_length=1, description="Platform tag, e.g. 'meta' or 'custom_3'")
    campaign_id: str = Field(min_length=1, description="Provider-native campaign identifier")
    campaign_name: Optional[str] = None
    country_code: Optional[str] = Field(default=None, description="ISO-3166 alpha-2, None when unknown")
    date: dt.date

    spend: Decimal = Field(default=Decimal("0"), ge=0)
    revenue: Decimal = Field(default=Decimal("0"), ge=0)
    impressions: int = Field(default=0, ge=0)
    clicks: int = Field(default=0, ge=0)
    purchases: int = Field(default=0, ge=0)

    currency_code: Optional[str] = Field(default=None, description="ISO-4217 of spend/revenue")

    @field_validator("country_code", mode="before")
    @classmethod
    def _country(cls, value: Optional[str]) -> Optional[str]:
        return normalize_country(value) or None

    @field_validator("currency_code", mode="before")
    @classmethod
    def _currency(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        code = str(value).strip().upper()
        return code or None

    @model_validator(mode="after")
    def _currency_required_for_money(self) -> "CanonicalRow":
        if (self.spend or self.revenue) and not self.currency_code:
            raise ValueError("currency_code is required when spend or revenue is non-zero")
        return self

    @property
    def country_key(self) -> str:
        return self.country_code or UNKNOWN_COUNTRY

    @property
    def is_normalized(self) -> bool:
        """True when the monetary fields are already in the normalized currency."""
        if not self.spend and not self.revenue:
            return True
        return self.currency_code == NORMALIZED_CURRENCY

    def is_empty(self) -> bool:
        """A row without spend, revenue, impressions, clicks or purchases carries nothing."""
        return not (self.spend or self.revenue or self.impressions or self.clicks or self.purchases)


__all__ = ["CanonicalRow", "normalize_country"]
