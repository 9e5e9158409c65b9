"""Pydantic schemas for video endpoints."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import Field

from earntrack_media.core.schemas import CamelModel
from earntrack_media.modules.transcoding.schemas import TranscodeJobResponse
from earntrack_media.modules.video.models import VideoStatus

TITLE_MAX_LENGTH = 500
DESCRIPTION_MAX_LENGTH = 5000


class VideoSummary(CamelModel):
    """Asset summary returned right after upload."""
    id: uuid.UUID
    title: str
    description: Optional[str] = None
    status: VideoStatus
    file_size: int
    uploaded_at: datetime


class UploadResponse(CamelModel):
    message: str
    video: VideoSummary


class VideoResponse(CamelModel):
    """Asset with its transcode jobs."""
    id: uuid.UUID
    owner_id: uuid.UUID
    title: str
    description: Optional[str] = None
    content_type: str
    original_filename: Optional[str] = None
    file_size: int
    duration: Optional[float] = None
    source_codec: Optional[str] = None
    source_format: Optional[str] = None
    source_resolution: Optional[str] = None
    source_bitrate: Optional[int] = None
    status: VideoStatus
    thumbnail_url: Optional[str] = None
    cdn_url: Optional[str] = None
    view_count: int
    uploaded_at: datetime
    processed_at: Optional[datetime] = None
    transcode_jobs: list[TranscodeJobResponse] = []
    access_log_count: Optional[int] = None

    @classmethod
    def from_model(cls, video, jobs=(), access_log_count: Optional[int] = None) -> "VideoResponse":
        response = cls.model_validate(video)
        response.transcode_jobs = [TranscodeJobResponse.model_validate(job) for job in jobs]
        response.access_log_count = access_log_count
        return response


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class VideoListResponse(CamelModel):
    videos: list[VideoResponse]
    pagination: Pagination


class VideoDetailResponse(CamelModel):
    video: VideoResponse


class SignedUrlResponse(CamelModel):
    url: str
    expires_in: int = Field(gt=0)
