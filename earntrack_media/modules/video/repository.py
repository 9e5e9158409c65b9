"""Repository for video asset database operations."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from earntrack_media.core.exceptions import NotFoundError, UnauthorizedError
from earntrack_media.modules.analytics.models import VideoAccessLog
from earntrack_media.modules.transcoding.models import TranscodeJob, utcnow
from earntrack_media.modules.video.models import Video, VideoStatus


class VideoRepository:
    """Repository for Video operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        owner_id: uuid.UUID,
        title: str,
        source_key: str,
        content_type: str,
        file_size: int,
        description: Optional[str] = None,
        original_filename: Optional[str] = None,
    ) -> Video:
        """Create a video in UPLOADING status."""
        video = Video(
            owner_id=owner_id,
            title=title,
            description=description,
            source_key=source_key,
            content_type=content_type,
            file_size=file_size,
            original_filename=original_filename,
            status=VideoStatus.UPLOADING.value,
            view_count=0,
            uploaded_at=utcnow(),
        )
        self.session.add(video)
        await self.session.flush()
        return video

    async def get_by_id(self, video_id: uuid.UUID) -> Optional[Video]:
        result = await self.session.execute(select(Video).where(Video.id == video_id))
        return result.scalar_one_or_none()

    async def get_owned(self, video_id: uuid.UUID, owner_id: uuid.UUID) -> Video:
        """Get a video of the given owner.

        Raises:
            NotFoundError: If the video does not exist
            UnauthorizedError: If it belongs to someone else
        """
        video = await self.get_by_id(video_id)
        if video is None:
            raise NotFoundError("Video not found")
        if video.owner_id != owner_id:
            raise UnauthorizedError("Video not found")
        return video

    async def list_by_owner(
        self,
        owner_id: uuid.UUID,
        offset: int = 0,
        limit: int = 20,
    ) -> list[Video]:
        """Videos of an owner, newest upload first."""
        result = await self.session.execute(
            select(Video)
            .where(Video.owner_id == owner_id)
            .order_by(Video.uploaded_at.desc(), Video.id)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_by_owner(self, owner_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(Video).where(Video.owner_id == owner_id)
        )
        return result.scalar_one()

    async def update_media_info(
        self,
        video: Video,
        duration: Optional[float],
        codec: Optional[str],
        resolution: Optional[str],
        bitrate: Optional[int],
        container: Optional[str] = None,
    ) -> Video:
        video.duration = duration
        video.source_codec = codec
        video.source_resolution = resolution
        video.source_bitrate = bitrate
        video.source_format = container
        await self.session.flush()
        return video

    async def set_thumbnail(self, video: Video, key: str, url: str) -> Video:
        video.thumbnail_key = key
        video.thumbnail_url = url
        await self.session.flush()
        return video

    async def advance_status(
        self,
        video: Video,
        target: VideoStatus,
        processed_at: Optional[datetime] = None,
        cdn_url: Optional[str] = None,
    ) -> bool:
        """Move a video forward to ``target``.

        Returns False and leaves the row untouched when the change would not
        be forward.
        """
        if not VideoStatus.can_transition(VideoStatus(video.status), target):
            return False

        video.status = target.value
        if processed_at is not None:
            video.processed_at = processed_at
        if cdn_url is not None:
            video.cdn_url = cdn_url
        await self.session.flush()
        return True

    async def increment_view_count(self, video_id: uuid.UUID) -> None:
        await self.session.execute(
            update(Video)
            .where(Video.id == video_id)
            .values(view_count=Video.view_count + 1)
        )

    async def delete(self, video: Video) -> None:
        """Delete a video with its jobs and access logs."""
        await self.session.execute(delete(TranscodeJob).where(TranscodeJob.video_id == video.id))
        await self.session.execute(delete(VideoAccessLog).where(VideoAccessLog.video_id == video.id))
        await self.session.delete(video)
        await self.session.flush()
