"""Celery tasks for metadata and thumbnail extraction.

The raw upload is downloaded once into a temporary directory. Probing and
thumbnail generation then run side by side; a failure of one is logged and
does not affect the other. When both have settled the video moves from
UPLOADING to PROCESSING, even if neither succeeded.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional

from earntrack_media.core.celery_app import MediaTask, celery_app
from earntrack_media.core.exceptions import StorageError
from earntrack_media.core.logging import correlation_scope, log_error, log_info, log_warning
from earntrack_media.core.metrics import VIDEO_STATUS_TRANSITIONS_TOTAL
from earntrack_media.core.queue import EXTRACT_METADATA_TASK, MetadataWorkItem
from earntrack_media.modules.transcoding.ffmpeg import MediaInfo
from earntrack_media.modules.transcoding.models import utcnow
from earntrack_media.modules.video.keys import thumbnail_key
from earntrack_media.modules.video.models import VideoStatus
from earntrack_media.modules.video.repository import VideoRepository
from earntrack_media.pipeline import MediaPipeline, get_worker_pipeline

logger = logging.getLogger(__name__)


@dataclass
class Thumbnail:
    key: str
    url: str


async def generate_thumbnail(pipeline: MediaPipeline, video_id, source_path: str) -> Thumbnail:
    """Grab a frame at the configured fraction of the duration and upload it.

    Raises:
        TranscodeError: If ffmpeg fails
        StorageError: If the upload fails
    """
    settings = pipeline.settings
    transcoder = pipeline.transcoder

    duration = await asyncio.to_thread(transcoder.get_duration, source_path)
    output_path = os.path.join(os.path.dirname(source_path), "thumbnail.jpg")
    await asyncio.to_thread(
        transcoder.extract_thumbnail,
        source_path,
        output_path,
        duration * settings.THUMBNAIL_POSITION,
        settings.THUMBNAIL_SIZE,
    )

    key = thumbnail_key(video_id)
    result = await pipeline.storage.upload_file(output_path, key, content_type="image/jpeg")
    if not result.success:
        raise StorageError(f"Thumbnail upload failed: {result.error_message}")
    return Thumbnail(key=key, url=pipeline.storage.get_public_url(key))


async def process_metadata_extraction(pipeline: MediaPipeline, item: MetadataWorkItem) -> dict:
    """Probe the upload, generate its thumbnail and update the video."""
    video_id = str(item.video_id)
    info: Optional[MediaInfo] = None
    thumbnail: Optional[Thumbnail] = None

    try:
        async with pipeline.storage.download_to_temp(item.source_key) as source_path:
            probe_result, thumbnail_result = await asyncio.gather(
                asyncio.to_thread(pipeline.transcoder.probe, source_path),
                generate_thumbnail(pipeline, item.video_id, source_path),
                return_exceptions=True,
            )
    except StorageError as e:
        log_error(logger, "Source download failed", e, video_id=video_id, key=item.source_key)
    else:
        # Cancellation and interpreter exits still propagate
        for result in (probe_result, thumbnail_result):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

        if isinstance(probe_result, Exception):
            log_error(logger, "Metadata probe failed", probe_result, video_id=video_id)
        else:
            info = probe_result

        if isinstance(thumbnail_result, Exception):
            log_error(logger, "Thumbnail generation failed", thumbnail_result, video_id=video_id)
        else:
            thumbnail = thumbnail_result

    async with pipeline.session_maker() as session:
        repo = VideoRepository(session)
        video = await repo.get_by_id(item.video_id)
        if video is None:
            log_warning(logger, "Video deleted before extraction finished", video_id=video_id)
            return {"success": False, "video_id": video_id, "error": "Video not found"}

        if info is not None:
            await repo.update_media_info(
                video,
                duration=info.duration,
                codec=info.codec,
                resolution=info.resolution,
                bitrate=info.bitrate,
                container=info.format_name,
            )
        if thumbnail is not None:
            await repo.set_thumbnail(video, thumbnail.key, thumbnail.url)

        advanced = await repo.advance_status(video, VideoStatus.PROCESSING, processed_at=utcnow())
        await session.commit()

    if advanced:
        VIDEO_STATUS_TRANSITIONS_TOTAL.labels(status=VideoStatus.PROCESSING.value).inc()

    log_info(
        logger, "Metadata extraction finished",
        video_id=video_id, probed=info is not None, thumbnail=thumbnail is not None,
    )
    return {
        "success": info is not None and thumbnail is not None,
        "video_id": video_id,
        "duration": info.duration if info else None,
        "thumbnail_url": thumbnail.url if thumbnail else None,
    }


@celery_app.task(name=EXTRACT_METADATA_TASK, bind=True, base=MediaTask)
def extract_metadata_task(self: MediaTask, payload: dict) -> dict:
    """Extract metadata and a thumbnail for an uploaded video.

    Args:
        payload: ``{videoId, sourceKey}``
    """
    item = MetadataWorkItem.model_validate(payload)
    with correlation_scope(str(item.video_id)):
        return asyncio.run(process_metadata_extraction(get_worker_pipeline(), item))
