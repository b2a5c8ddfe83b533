"""
Campaign listing, attribution settings and the country rollup.
"""
import datetime as dt
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.orm import Session
import time
from spendsync.api.deps import get_db, get_current_user_id
from spendsync.models.schemas.attribution import (
    AttributionSettingRead,
    AttributionSettingUpdate,
    CampaignSummary,
    CountryContributionRead,
    NeedsDetailRead,
    RollupRead,
)
from spendsync.services.attribution import compute_country_rollup, list_campaigns, set_setting, totals_of
from spendsync.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)

# Declared before "/{platform}" so "rollup" is not taken for a platform tag.
@router.get(
    "/rollup",
    response_model=RollupRead,
    summary="Country rollup of attributed campaigns",
    description="Country-level contributions derived from campaign rows and current attribution settings"
)
async def get_country_rollup(
    request: Request,
    platform: Optional[str] = Query(None, description="Restrict to one platform"),
    start_date: Optional[dt.date] = Query(None),
    end_date: Optional[dt.date] = Query(None),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> RollupRead:
    if start_date and end_date and start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must not be after end_date"
        )

    start_time = time.time()
    result = compute_country_rollup(db, user_id, platform=platform, start=start_date, end=end_date)

    response = RollupRead(
        contributions=[
            CountryContributionRead(
                country_code=c.country_code,
                date=c.date,
                platform=c.platform,
                totals=totals_of(c.totals),
            )
            for c in result.contributions
        ],
        needs_detail=[
            NeedsDetailRead(
                platform=n.platform,
                campaign_id=n.campaign_id,
                date=n.date,
                totals=totals_of(n.totals),
            )
            for n in result.needs_detail
        ],
    )

    log_performance("country_rollup", (time.time() - start_time) * 1000, {
        "user_id": user_id,
        "platform": platform,
        "contributions": len(response.contributions),
        "needs_detail": len(response.needs_detail),
        "request_id": getattr(request.state, "request_id", None),
    })
    return response

@router.get(
    "/{platform}",
    response_model=List[CampaignSummary],
    summary="List campaigns of a platform",
    description="Per-campaign totals with the effective attribution mode"
)
async def get_campaigns(
    platform: str,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> List[CampaignSummary]:
    campaigns = list_campaigns(db, user_id, platform)
    logger.debug("Campaigns listed", user_id=user_id, platform=platform, count=len(campaigns))
    return campaigns

@router.put(
    "/{platform}/{campaign_id}/attribution",
    response_model=AttributionSettingRead,
    summary="Set campaign attribution",
    description="Choose how a campaign's rows roll up into country totals. Stored campaign rows are not rewritten."
)
async def update_attribution(
    platform: str,
    campaign_id: str,
    setting: AttributionSettingUpdate,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> AttributionSettingRead:
    logger.info(
        "Attribution update requested",
        user_id=user_id,
        platform=platform,
        campaign_id=campaign_id,
        mode=setting.mode.value,
        request_id=getattr(request.state, "request_id", None)
    )
    return set_setting(db, user_id, platform, campaign_id, setting.mode, setting.country_code)
