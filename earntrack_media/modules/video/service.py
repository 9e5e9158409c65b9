"""Video service: ingestion, listing, signed URLs and deletion."""

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass
from typing import BinaryIO, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from earntrack_media.core.cdn import paths_for_keys
from earntrack_media.core.exceptions import StorageError, ValidationError
from earntrack_media.core.logging import log_error, log_info, log_warning
from earntrack_media.core.metrics import MEDIA_UPLOADS_TOTAL
from earntrack_media.core.queue import MetadataWorkItem
from earntrack_media.modules.analytics.repository import AccessLogRepository
from earntrack_media.modules.transcoding.models import TranscodeJob
from earntrack_media.modules.transcoding.repository import TranscodeJobRepository
from earntrack_media.modules.video.keys import hls_prefix, raw_video_key, thumbnail_key
from earntrack_media.modules.video.models import Video
from earntrack_media.modules.video.repository import VideoRepository
from earntrack_media.modules.video.schemas import DESCRIPTION_MAX_LENGTH, TITLE_MAX_LENGTH

logger = logging.getLogger(__name__)


def validate_upload(
    content_type: Optional[str],
    file_size: int,
    allowed_types: list[str],
    max_size: int,
) -> None:
    """Check an upload against the MIME allow-list and the size ceiling.

    Raises:
        ValidationError: If the type is not allowed or the file is empty or too large
    """
    if not content_type or content_type.lower() not in allowed_types:
        raise ValidationError(
            f"Invalid file type: {content_type}. Allowed: {', '.join(allowed_types)}"
        )
    if file_size <= 0:
        raise ValidationError("Uploaded file is empty")
    if file_size > max_size:
        raise ValidationError(f"File too large. Maximum size is {max_size} bytes")


def validate_metadata(title: str, description: Optional[str]) -> None:
    if not title or not title.strip():
        raise ValidationError("Title is required")
    if len(title) > TITLE_MAX_LENGTH:
        raise ValidationError(f"Title must be at most {TITLE_MAX_LENGTH} characters")
    if description is not None and len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationError(f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters")


@dataclass
class VideoPage:
    videos: list[Video]
    completed_jobs: dict[uuid.UUID, list[TranscodeJob]]
    access_log_counts: dict[uuid.UUID, int]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class VideoService:
    """Service for video asset operations."""

    def __init__(self, session: AsyncSession, pipeline):
        self.session = session
        self.pipeline = pipeline
        self.video_repo = VideoRepository(session)
        self.job_repo = TranscodeJobRepository(session)
        self.access_repo = AccessLogRepository(session)

    async def upload_video(
        self,
        owner_id: uuid.UUID,
        fileobj: BinaryIO,
        filename: str,
        content_type: Optional[str],
        file_size: int,
        title: str,
        description: Optional[str] = None,
    ) -> Video:
        """Store the raw upload, create the video and enqueue extraction.

        Nothing is written to the database when the object store rejects
        the upload.

        Raises:
            ValidationError: Disallowed type, size or metadata
            StorageError: The object store write failed
        """
        settings = self.pipeline.settings
        try:
            validate_upload(
                content_type, file_size,
                settings.ALLOWED_VIDEO_MIME_TYPES, settings.MAX_UPLOAD_SIZE,
            )
            validate_metadata(title, description)
        except ValidationError:
            MEDIA_UPLOADS_TOTAL.labels(result="rejected").inc()
            raise

        key = raw_video_key(owner_id, filename)
        result = await self.pipeline.storage.upload_fileobj(
            fileobj,
            key,
            content_type=content_type,
            metadata={"owner-id": str(owner_id), "original-name": filename},
        )
        if not result.success:
            MEDIA_UPLOADS_TOTAL.labels(result="storage_error").inc()
            log_error(logger, "Raw upload failed", key=key, error=result.error_message)
            raise StorageError(f"Failed to store upload: {result.error_message}")

        video = await self.video_repo.create(
            owner_id=owner_id,
            title=title.strip(),
            description=description,
            source_key=key,
            content_type=content_type,
            file_size=result.file_size or file_size,
            original_filename=filename,
        )
        # The extraction worker reads the row
        await self.session.commit()
        MEDIA_UPLOADS_TOTAL.labels(result="accepted").inc()

        try:
            await asyncio.to_thread(
                self.pipeline.queue.enqueue_metadata_extraction,
                MetadataWorkItem(video_id=video.id, source_key=key),
            )
        except Exception as e:
            # The video stays UPLOADING; a transcode request still works
            log_error(logger, "Failed to enqueue metadata extraction", e, video_id=str(video.id))

        log_info(logger, "Video uploaded", video_id=str(video.id), size=video.file_size)
        return video

    async def list_videos(self, owner_id: uuid.UUID, page: int = 1, limit: int = 20) -> VideoPage:
        """One page of the owner's videos with completed jobs and view log counts."""
        total = await self.video_repo.count_by_owner(owner_id)
        videos = await self.video_repo.list_by_owner(owner_id, offset=(page - 1) * limit, limit=limit)
        ids = [video.id for video in videos]
        return VideoPage(
            videos=videos,
            completed_jobs=await self.job_repo.list_completed_for_videos(ids),
            access_log_counts=await self.access_repo.count_for_videos(ids),
            page=page,
            limit=limit,
            total=total,
        )

    async def get_video(self, video_id: uuid.UUID, owner_id: uuid.UUID) -> tuple[Video, list[TranscodeJob]]:
        video = await self.video_repo.get_owned(video_id, owner_id)
        return video, await self.job_repo.list_for_video(video.id)

    async def get_signed_url(self, video_id: uuid.UUID, owner_id: uuid.UUID) -> tuple[str, int]:
        """Time-limited direct URL of the raw upload and its lifetime in seconds."""
        video = await self.video_repo.get_owned(video_id, owner_id)
        expires_in = self.pipeline.settings.SIGNED_URL_EXPIRE_SECONDS
        url = await self.pipeline.storage.get_signed_url(video.source_key, expires_in)
        return url, expires_in

    async def collect_object_keys(self, video: Video) -> list[str]:
        """Every object key ever associated with a video."""
        keys = [video.source_key, video.thumbnail_key or thumbnail_key(video.id)]
        jobs = await self.job_repo.list_for_video(video.id)
        keys.extend(job.output_key for job in jobs if job.output_key)
        keys.extend(await self.pipeline.storage.list_files(hls_prefix(video.id)))
        return list(dict.fromkeys(keys))

    async def delete_video(self, video_id: uuid.UUID, owner_id: uuid.UUID) -> list[str]:
        """Purge a video's objects, invalidate the CDN and delete its rows.

        Individual object or CDN failures are logged and do not stop the
        deletion. Returns the keys that were removed.
        """
        video = await self.video_repo.get_owned(video_id, owner_id)
        keys = await self.collect_object_keys(video)

        deleted = []
        for key in keys:
            if await self.pipeline.storage.delete_file(key):
                deleted.append(key)
            else:
                log_warning(logger, "Failed to delete object", video_id=str(video.id), key=key)

        # One wildcard covers every playlist and segment under the HLS prefix
        prefix = hls_prefix(video.id)
        paths = paths_for_keys([key for key in keys if not key.startswith(prefix)]) + [f"/{prefix}*"]
        try:
            await self.pipeline.cdn.invalidate(paths)
        except StorageError as e:
            log_error(logger, "CDN invalidation failed", e, video_id=str(video.id))

        await self.video_repo.delete(video)
        await self.session.commit()

        log_info(
            logger, "Video deleted",
            video_id=str(video_id), objects=len(keys), deleted=len(deleted),
        )
        return deleted
