"""Access logging and per-video analytics."""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from earntrack_media.core.exceptions import NotFoundError, ValidationError
from earntrack_media.core.geolocation import get_country_from_ip
from earntrack_media.modules.analytics.models import VideoAccessLog
from earntrack_media.modules.analytics.repository import AccessLogRepository
from earntrack_media.modules.analytics.schemas import CountryViews, DailyViews, VideoAnalytics
from earntrack_media.modules.video.repository import VideoRepository

logger = logging.getLogger(__name__)


class AnalyticsService:
    """Records playback events and aggregates them."""

    def __init__(self, session: AsyncSession, pipeline):
        self.session = session
        self.pipeline = pipeline
        self.video_repo = VideoRepository(session)
        self.access_repo = AccessLogRepository(session)

    async def log_access(
        self,
        video_id: uuid.UUID,
        ip_address: str,
        country: Optional[str] = None,
        user_agent: Optional[str] = None,
        watch_time: Optional[float] = None,
    ) -> VideoAccessLog:
        """Append an access log entry and bump the view counter."""
        video = await self.video_repo.get_by_id(video_id)
        if video is None:
            raise NotFoundError("Video not found")

        settings = self.pipeline.settings
        if country is None and settings.GEOLOCATION_ENABLED:
            country = await get_country_from_ip(ip_address, settings.GEOIP_DB_PATH)

        entry = await self.access_repo.create(
            video_id=video.id,
            ip_address=ip_address[:45],
            country=country,
            user_agent=user_agent,
            watch_time=watch_time,
        )
        await self.video_repo.increment_view_count(video.id)
        return entry

    async def get_analytics(
        self,
        video_id: uuid.UUID,
        owner_id: uuid.UUID,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> VideoAnalytics:
        """Totals, unique viewers, mean watch time, top countries and daily views.

        Both date bounds are inclusive.
        """
        if start_date and end_date and start_date > end_date:
            raise ValidationError("startDate must not be after endDate")

        video = await self.video_repo.get_owned(video_id, owner_id)

        total, unique, avg_watch = await self.access_repo.get_totals(video.id, start_date, end_date)
        by_country = await self.access_repo.get_views_by_country(video.id, start_date, end_date)
        daily = await self.access_repo.get_daily_views(video.id, start_date, end_date)

        return VideoAnalytics(
            total_views=total,
            unique_viewers=unique,
            avg_watch_time=avg_watch,
            views_by_country=[CountryViews(country=c, views=n) for c, n in by_country],
            views_over_time=[DailyViews(date=d, views=n) for d, n in daily],
        )
