"""Analytics API router."""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from earntrack_media.core.database import get_db
from earntrack_media.core.exceptions import MediaPipelineError, to_http_exception
from earntrack_media.core.geolocation import get_client_ip
from earntrack_media.core.schemas import MessageResponse
from earntrack_media.core.security import get_current_owner_id
from earntrack_media.modules.analytics.schemas import AccessLogRequest, AnalyticsResponse
from earntrack_media.modules.analytics.service import AnalyticsService
from earntrack_media.pipeline import MediaPipeline, get_pipeline

router = APIRouter(prefix="/videos", tags=["analytics"])


@router.post("/{video_id}/access", response_model=MessageResponse)
async def log_access(
    video_id: uuid.UUID,
    request: Request,
    body: Optional[AccessLogRequest] = Body(None),
    db: AsyncSession = Depends(get_db),
    pipeline: MediaPipeline = Depends(get_pipeline),
):
    """Record a playback event. Public, called by players."""
    body = body or AccessLogRequest()
    try:
        await AnalyticsService(db, pipeline).log_access(
            video_id,
            ip_address=get_client_ip(request),
            country=body.country,
            user_agent=body.user_agent or request.headers.get("user-agent"),
            watch_time=body.watch_time,
        )
    except MediaPipelineError as e:
        raise to_http_exception(e)
    return MessageResponse(message="Access logged")


@router.get("/{video_id}/analytics", response_model=AnalyticsResponse)
async def get_analytics(
    video_id: uuid.UUID,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    owner_id: uuid.UUID = Depends(get_current_owner_id),
    db: AsyncSession = Depends(get_db),
    pipeline: MediaPipeline = Depends(get_pipeline),
):
    """View totals, unique viewers, watch time, countries and daily views."""
    try:
        analytics = await AnalyticsService(db, pipeline).get_analytics(
            video_id, owner_id, start_date=start_date, end_date=end_date
        )
    except MediaPipelineError as e:
        raise to_http_exception(e)
    return AnalyticsResponse(analytics=analytics)
