"""Database models for transcode jobs.

One row per (video, format, resolution) rendition requested. Rows are
created PENDING by the orchestrator and mutated only by the worker that
claims them.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Enum as SQLEnum, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from earntrack_media.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TranscodeFormat(str, Enum):
    """Output container of a rendition."""
    MP4 = "MP4"
    WEBM = "WEBM"
    HLS = "HLS"


class Resolution(str, Enum):
    """Output resolution tiers."""
    SD_480P = "SD_480P"
    HD_720P = "HD_720P"
    FHD_1080P = "FHD_1080P"
    QHD_2K = "QHD_2K"
    UHD_4K = "UHD_4K"


@dataclass(frozen=True)
class ResolutionProfile:
    """Fixed encode target of a resolution tier."""
    width: int
    height: int
    bitrate_kbps: int

    @property
    def bandwidth(self) -> int:
        """Bitrate in bits per second, as HLS reports it."""
        return self.bitrate_kbps * 1000


RESOLUTION_PROFILES: dict[Resolution, ResolutionProfile] = {
    Resolution.SD_480P: ResolutionProfile(854, 480, 1500),
    Resolution.HD_720P: ResolutionProfile(1280, 720, 2500),
    Resolution.FHD_1080P: ResolutionProfile(1920, 1080, 5000),
    Resolution.QHD_2K: ResolutionProfile(2560, 1440, 8000),
    Resolution.UHD_4K: ResolutionProfile(3840, 2160, 15000),
}

FORMAT_EXTENSIONS: dict[TranscodeFormat, str] = {
    TranscodeFormat.MP4: "mp4",
    TranscodeFormat.WEBM: "webm",
    TranscodeFormat.HLS: "m3u8",
}

FORMAT_CONTENT_TYPES: dict[TranscodeFormat, str] = {
    TranscodeFormat.MP4: "video/mp4",
    TranscodeFormat.WEBM: "video/webm",
    TranscodeFormat.HLS: "application/x-mpegURL",
}

DEFAULT_FORMATS = [TranscodeFormat.MP4, TranscodeFormat.WEBM, TranscodeFormat.HLS]
DEFAULT_RESOLUTIONS = [Resolution.HD_720P, Resolution.FHD_1080P]


class TranscodeStatus(str, Enum):
    """Status of a transcode job.

    PENDING -> PROCESSING -> COMPLETED | FAILED. A PENDING job may also go
    straight to FAILED when it could not be enqueued.
    """
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TranscodeStatus.COMPLETED, TranscodeStatus.FAILED)

    @classmethod
    def can_transition(cls, current: "TranscodeStatus", target: "TranscodeStatus") -> bool:
        return target in JOB_TRANSITIONS.get(current, frozenset())


JOB_TRANSITIONS: dict[TranscodeStatus, frozenset[TranscodeStatus]] = {
    TranscodeStatus.PENDING: frozenset({TranscodeStatus.PROCESSING, TranscodeStatus.FAILED}),
    TranscodeStatus.PROCESSING: frozenset({TranscodeStatus.COMPLETED, TranscodeStatus.FAILED}),
    TranscodeStatus.COMPLETED: frozenset(),
    TranscodeStatus.FAILED: frozenset(),
}


class TranscodeJob(Base):
    """Model for one rendition of a video."""

    __tablename__ = "video_transcode_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    video_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("videos.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Target
    format: Mapped[TranscodeFormat] = mapped_column(
        SQLEnum(TranscodeFormat, name="transcode_format"), nullable=False
    )
    resolution: Mapped[Resolution] = mapped_column(
        SQLEnum(Resolution, name="transcode_resolution"), nullable=False
    )

    # Status tracking
    status: Mapped[TranscodeStatus] = mapped_column(
        SQLEnum(TranscodeStatus, name="transcode_status"),
        nullable=False,
        default=TranscodeStatus.PENDING,
        index=True,
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    celery_task_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Output
    output_key: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    output_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)  # bytes
    bitrate: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # kbps

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def profile(self) -> ResolutionProfile:
        return RESOLUTION_PROFILES[self.resolution]

    def __repr__(self) -> str:
        return f"<TranscodeJob {self.id} - {self.format.value}/{self.resolution.value} - {self.status.value}>"
