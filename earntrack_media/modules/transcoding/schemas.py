"""Pydantic schemas for transcode requests and job projections."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from earntrack_media.core.schemas import CamelModel
from earntrack_media.modules.transcoding.models import (
    Resolution,
    TranscodeFormat,
    TranscodeStatus,
)


def _dedupe(values: Optional[list]) -> Optional[list]:
    if values is None:
        return None
    if not values:
        raise ValueError("must not be empty")
    return list(dict.fromkeys(values))


class TranscodeRequest(CamelModel):
    """Body of POST /videos/{id}/transcode. Omitted lists use the defaults."""
    formats: Optional[list[TranscodeFormat]] = None
    resolutions: Optional[list[Resolution]] = None

    @field_validator("formats", "resolutions")
    @classmethod
    def unique_non_empty(cls, value):
        return _dedupe(value)


class TranscodeRequestResponse(CamelModel):
    message: str
    video_id: uuid.UUID
    job_ids: list[uuid.UUID]


class TranscodeJobResponse(CamelModel):
    """Client view of a transcode job."""
    id: uuid.UUID
    video_id: uuid.UUID
    format: TranscodeFormat
    resolution: Resolution
    status: TranscodeStatus
    output_key: Optional[str] = None
    output_size: Optional[int] = None
    bitrate: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class TranscodeStatusResponse(CamelModel):
    video_id: uuid.UUID
    video_status: str
    transcode_jobs: list[TranscodeJobResponse]
    total_jobs: int = Field(ge=0)
    completed_jobs: int = Field(ge=0)
    failed_jobs: int = Field(ge=0)
    pending_jobs: int = Field(ge=0)
    processing_jobs: int = Field(ge=0)


class VariantPlaylistResponse(CamelModel):
    resolution: Resolution
    bandwidth: int
    url: str


class StreamPlaylistResponse(CamelModel):
    master_playlist_url: str
    variant_playlists: list[VariantPlaylistResponse]


class StreamResponse(CamelModel):
    message: str
    playlist: StreamPlaylistResponse
