"""
Sync trigger and status endpoints.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from spendsync.api.deps import get_db, get_current_user_id, get_credentials, get_fx_cache
from spendsync.models.schemas.sync import SyncRunRead, SyncStatusRead
from spendsync.services.credentials import CredentialManager
from spendsync.services.currency import ExchangeRateCache
from spendsync.services.sync import get_sync_status, run_platform_sync
from spendsync.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)

@router.get(
    "/status",
    response_model=SyncStatusRead,
    summary="Sync status",
    description="Last run, lock state and retry schedule per connected platform"
)
async def sync_status(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> SyncStatusRead:
    return get_sync_status(db, user_id)

@router.post(
    "/{platform}",
    response_model=SyncRunRead,
    summary="Sync one platform",
    description="""
    Fetch the platform's re-sync window, convert to USD and overwrite both aggregates for that window.

    Errors:
    * 404 - platform has no adapter (custom sources are edited manually)
    * 409 - not connected, or a sync for this platform is already running
    * 502 - the provider rejected the request
    * 503 - transient provider failure; sync_log carries the next retry time
    """
)
async def trigger_sync(
    platform: str,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    credential_manager: CredentialManager = Depends(get_credentials),
    fx_cache: ExchangeRateCache = Depends(get_fx_cache)
) -> SyncRunRead:
    logger.info(
        "Sync requested",
        user_id=user_id,
        platform=platform,
        request_id=getattr(request.state, "request_id", None)
    )
    outcome = await run_platform_sync(
        db,
        user_id,
        platform,
        credential_manager=credential_manager,
        fx_cache=fx_cache,
    )
    return outcome.to_read()
