"""
Manual entry endpoints for custom sources and imports.
"""
import datetime as dt
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status, Request
from sqlalchemy.orm import Session
from spendsync.api.deps import get_db, get_current_user_id, get_fx_cache
from spendsync.models.schemas.base import ResponseBase
from spendsync.models.schemas.entries import ManualEntryCreate, ManualEntryKey, ManualEntryPage, ManualEntryUpdate
from spendsync.services.currency import ExchangeRateCache
from spendsync.services.manual_entries import (
    MAX_PAGE_SIZE,
    delete_source,
    list_entries,
    remove_manual_entry,
    save_manual_entry,
    update_manual_entry,
)
from spendsync.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)

@router.post(
    "",
    response_model=ResponseBase,
    status_code=status.HTTP_201_CREATED,
    summary="Save a manual entry",
    description="Write one (campaign, country, day) entry. 'replace' overwrites the key; 'add' sums with what is stored."
)
async def create_entry(
    entry: ManualEntryCreate,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    fx_cache: ExchangeRateCache = Depends(get_fx_cache)
) -> ResponseBase:
    request_id = getattr(request.state, "request_id", None)
    logger.info(
        "Manual entry received",
        user_id=user_id,
        platform=entry.platform,
        campaign_id=entry.campaign_id,
        date=entry.date.isoformat(),
        on_conflict=entry.on_conflict,
        request_id=request_id
    )

    summary = await save_manual_entry(db, user_id, entry, fx_cache)
    message = "Entry removed (all values zero)" if summary.merged == 0 else "Entry saved"
    return ResponseBase(message=message, data=summary.as_dict())

@router.delete(
    "",
    response_model=ResponseBase,
    summary="Delete a manual entry",
    description="Remove one (campaign, country, day) key and recompute the matching country row"
)
async def delete_entry(
    key: ManualEntryKey,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> ResponseBase:
    if not remove_manual_entry(db, user_id, key):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No entry for campaign '{key.campaign_id}' on {key.date.isoformat()}"
        )
    logger.info("Manual entry deleted", user_id=user_id, platform=key.platform, campaign_id=key.campaign_id)
    return ResponseBase(message="Entry deleted")

@router.get(
    "/{platform}",
    response_model=ManualEntryPage,
    summary="List entries of a source",
    description="Stored entries of one source, newest day first. Optionally filtered by day and campaign."
)
async def get_entries(
    platform: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    date: Optional[dt.date] = Query(None, description="Only entries of this day"),
    campaign_id: Optional[str] = Query(None),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> ManualEntryPage:
    return list_entries(db, user_id, platform, page=page, limit=limit, day=date, campaign_id=campaign_id)

@router.patch(
    "/{platform}/{entry_id}",
    response_model=ResponseBase,
    summary="Edit a stored entry",
    description="Change values, campaign, country or day of one entry. Both affected country rows are recomputed."
)
async def patch_entry(
    platform: str,
    entry_id: int,
    patch: ManualEntryUpdate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    fx_cache: ExchangeRateCache = Depends(get_fx_cache)
) -> ResponseBase:
    found, entry = await update_manual_entry(db, user_id, platform, entry_id, patch, fx_cache)
    if not found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Entry {entry_id} not found")
    logger.info("Manual entry updated", user_id=user_id, platform=platform, entry_id=entry_id, fields=sorted(patch.model_fields_set))
    if entry is None:
        return ResponseBase(message="Entry removed (all values zero)")
    return ResponseBase(message="Entry updated", data=entry.model_dump(mode="json"))

@router.delete(
    "/{platform}",
    response_model=ResponseBase,
    summary="Delete a custom source",
    description="Remove every campaign and country row stored for a custom source"
)
async def delete_custom_source(
    platform: str,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> ResponseBase:
    campaign_rows, country_rows = delete_source(db, user_id, platform)
    logger.info("Custom source deleted", user_id=user_id, platform=platform, campaign_rows=campaign_rows, country_rows=country_rows)
    return ResponseBase(
        message="Source deleted",
        data={"deleted_campaign_rows": campaign_rows, "deleted_country_rows": country_rows}
    )
