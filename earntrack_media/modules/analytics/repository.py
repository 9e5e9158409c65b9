"""Repository for access log writes and analytics aggregation."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from earntrack_media.modules.analytics.models import VideoAccessLog
from earntrack_media.modules.transcoding.models import utcnow


class AccessLogRepository:
    """Repository for VideoAccessLog operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        video_id: uuid.UUID,
        ip_address: str,
        country: Optional[str] = None,
        user_agent: Optional[str] = None,
        watch_time: Optional[float] = None,
        viewed_at: Optional[datetime] = None,
    ) -> VideoAccessLog:
        entry = VideoAccessLog(
            video_id=video_id,
            ip_address=ip_address,
            country=country,
            user_agent=user_agent,
            watch_time=watch_time,
            viewed_at=viewed_at or utcnow(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def count_for_videos(self, video_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
        if not video_ids:
            return {}
        result = await self.session.execute(
            select(VideoAccessLog.video_id, func.count())
            .where(VideoAccessLog.video_id.in_(video_ids))
            .group_by(VideoAccessLog.video_id)
        )
        return {video_id: count for video_id, count in result.all()}

    def _filters(
        self,
        video_id: uuid.UUID,
        start_date: Optional[datetime],
        end_date: Optional[datetime],
    ) -> list:
        conditions = [VideoAccessLog.video_id == video_id]
        if start_date is not None:
            conditions.append(VideoAccessLog.viewed_at >= start_date)
        if end_date is not None:
            conditions.append(VideoAccessLog.viewed_at <= end_date)
        return conditions

    async def get_totals(
        self,
        video_id: uuid.UUID,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> tuple[int, int, float]:
        """Total views, distinct viewer addresses and mean watch time.

        Entries without a watch time do not count towards the mean; with no
        timed entries the mean is 0.
        """
        result = await self.session.execute(
            select(
                func.count(VideoAccessLog.id),
                func.count(func.distinct(VideoAccessLog.ip_address)),
                func.avg(VideoAccessLog.watch_time),
            ).where(*self._filters(video_id, start_date, end_date))
        )
        total, unique, avg_watch = result.one()
        return total or 0, unique or 0, float(avg_watch) if avg_watch is not None else 0.0

    async def get_views_by_country(
        self,
        video_id: uuid.UUID,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 10,
    ) -> list[tuple[str, int]]:
        """Top countries by view count. Entries without a country are skipped."""
        views = func.count(VideoAccessLog.id).label("views")
        result = await self.session.execute(
            select(VideoAccessLog.country, views)
            .where(
                *self._filters(video_id, start_date, end_date),
                VideoAccessLog.country.is_not(None),
            )
            .group_by(VideoAccessLog.country)
            .order_by(views.desc(), VideoAccessLog.country)
            .limit(limit)
        )
        return [(country, count) for country, count in result.all()]

    async def get_daily_views(
        self,
        video_id: uuid.UUID,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 30,
    ) -> list[tuple]:
        """View counts per calendar day, newest day first.

        The day comes back as a ``date`` on Postgres and an ISO string on SQLite.
        """
        day = func.date(VideoAccessLog.viewed_at).label("day")
        result = await self.session.execute(
            select(day, func.count(VideoAccessLog.id))
            .where(*self._filters(video_id, start_date, end_date))
            .group_by(day)
            .order_by(day.desc())
            .limit(limit)
        )
        return [(day_value, count) for day_value, count in result.all()]
