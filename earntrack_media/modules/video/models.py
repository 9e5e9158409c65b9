"""Video asset model.

A video is created UPLOADING when the raw upload is stored, moves to
PROCESSING once extraction has run and settles at READY or FAILED when its
transcode jobs settle.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Float, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from earntrack_media.core.database import Base
from earntrack_media.modules.transcoding.models import utcnow


class VideoStatus(str, Enum):
    """Status of a video asset."""

    UPLOADING = "UPLOADING"
    PROCESSING = "PROCESSING"
    FAILED = "FAILED"
    READY = "READY"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @classmethod
    def can_transition(cls, current: "VideoStatus", target: "VideoStatus") -> bool:
        """Status only moves forward.

        FAILED ranks below READY: a later transcode request that succeeds
        may lift a FAILED asset to READY, a READY asset never degrades.
        """
        return target.rank > current.rank


_STATUS_RANK = {
    VideoStatus.UPLOADING: 0,
    VideoStatus.PROCESSING: 1,
    VideoStatus.FAILED: 2,
    VideoStatus.READY: 3,
}


class Video(Base):
    """Uploaded media asset owned by one freelancer."""

    __tablename__ = "videos"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    # Metadata
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Raw upload
    source_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    original_filename: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)  # bytes

    # Probed attributes
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # seconds
    source_codec: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    source_format: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    source_resolution: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # WxH
    source_bitrate: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)  # bps

    # Derived artifacts
    thumbnail_key: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    cdn_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=VideoStatus.UPLOADING.value, index=True
    )
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Timestamps
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<Video {self.id} - {self.status}>"
