"""Pydantic schemas for access logging and analytics."""

import datetime as dt
from typing import Optional

from pydantic import Field

from earntrack_media.core.schemas import CamelModel


class AccessLogRequest(CamelModel):
    """Body of POST /videos/{id}/access."""
    watch_time: Optional[float] = Field(None, ge=0)
    country: Optional[str] = Field(None, max_length=100)
    user_agent: Optional[str] = None


class CountryViews(CamelModel):
    country: str
    views: int


class DailyViews(CamelModel):
    date: dt.date
    views: int


class VideoAnalytics(CamelModel):
    total_views: int
    unique_viewers: int
    avg_watch_time: float
    views_by_country: list[CountryViews]
    views_over_time: list[DailyViews]


class AnalyticsResponse(CamelModel):
    analytics: VideoAnalytics
