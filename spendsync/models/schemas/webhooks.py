"""
Pydantic schemas for subscription-webhook payloads.

Only the fields the revenue pipeline reads are declared; everything else the
provider sends is kept (``extra="allow"``) and ignored.
"""
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict


class RevenueCatEvent(BaseModel):
    """A single RevenueCat event object."""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    type: str = ""
    app_user_id: Optional[str] = None
    product_id: Optional[str] = None
    country_code: Optional[str] = None
    currency: Optional[str] = None
    price: Optional[Any] = None
    price_in_purchased_currency: Optional[Any] = None
    purchased_at_ms: Optional[int] = None


class RevenueCatWebhook(BaseModel):
    """Envelope delivered to the webhook endpoint."""
    model_config = ConfigDict(extra="allow")

    api_version: Optional[str] = None
    event: RevenueCatEvent


class WebhookOutcome(BaseModel):
    """Result reported back to the webhook caller. Skips are not errors."""
    processed: bool = False
    skipped: bool = False
    reason: Optional[str] = None
    details: Dict[str, Any] = {}
