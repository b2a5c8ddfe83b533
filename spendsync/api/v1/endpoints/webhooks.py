"""
Provider webhook receivers.
"""
import hmac
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy import select
from sqlalchemy.orm import Session
from spendsync.api.deps import get_db, get_bearer_token, get_fx_cache
from spendsync.integrations.revenuecat import RevenueCatAdapter, process_webhook_event
from spendsync.models.db.connected_accounts import ConnectedAccount
from spendsync.models.schemas.webhooks import RevenueCatWebhook, WebhookOutcome
from spendsync.services.currency import ExchangeRateCache
from spendsync.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


def resolve_webhook_owner(db: Session, secret: str) -> Optional[int]:
    """Find the user whose RevenueCat connection is configured with ``secret``.

    The webhook secret lives in ``settings['webhook_secret']``; connections
    without one fall back to the stored API key.
    """
    connections = db.execute(
        select(ConnectedAccount).where(ConnectedAccount.platform == RevenueCatAdapter.platform)
    ).scalars()
    for connection in connections:
        expected = (connection.settings or {}).get("webhook_secret") or connection.access_token
        if expected and hmac.compare_digest(str(expected).encode(), secret.encode()):
            return connection.user_id
    return None


@router.post(
    "/revenuecat",
    response_model=WebhookOutcome,
    summary="RevenueCat webhook",
    description="Accumulate one revenue event into today's (or the purchase day's) aggregates. Non-revenue events are acknowledged and skipped."
)
async def revenuecat_webhook(
    payload: RevenueCatWebhook,
    request: Request,
    secret: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    fx_cache: ExchangeRateCache = Depends(get_fx_cache)
) -> WebhookOutcome:
    request_id = getattr(request.state, "request_id", None)
    user_id = resolve_webhook_owner(db, secret)
    if user_id is None:
        logger.warning("RevenueCat webhook with unknown secret", request_id=request_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown webhook secret",
            headers={"WWW-Authenticate": "Bearer"},
        )

    outcome = await process_webhook_event(db, user_id, payload.event, fx_cache)
    if outcome.skipped:
        logger.info(
            "RevenueCat webhook skipped",
            user_id=user_id,
            event_type=payload.event.type,
            reason=outcome.reason,
            request_id=request_id
        )
    return outcome
