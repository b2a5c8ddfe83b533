"""
Base schemas used across the API.
"""
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from pydantic import BaseModel, Field, ConfigDict


class ResponseBase(BaseModel):
    """Common response envelope with an optional arbitrary data payload."""
    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class MetricTotals(BaseModel):
    """Field-wise totals of the five aggregate measures (money already normalized)."""
    spend: float = 0.0
    revenue: float = 0.0
    impressions: int = 0
    clicks: int = 0
    purchases: int = 0
