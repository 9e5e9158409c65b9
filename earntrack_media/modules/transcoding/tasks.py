"""Celery tasks for transcode jobs.

One message is one (format, resolution) rendition. The worker claims the
job with a conditional update, so a redelivered message for a job that is
already running or settled is acknowledged without doing the work twice.
Every failure is recorded on the job; tasks are never retried.
"""

import asyncio
import logging
import os
import time
import uuid
from dataclasses import dataclass

from earntrack_media.core.celery_app import MediaTask, celery_app
from earntrack_media.core.exceptions import StorageError, TranscodeError
from earntrack_media.core.logging import correlation_scope, log_error, log_info, log_warning
from earntrack_media.core.metrics import TRANSCODE_DURATION_SECONDS, TRANSCODE_JOBS_TOTAL
from earntrack_media.core.queue import TRANSCODE_TASK, TranscodeWorkItem
from earntrack_media.modules.transcoding.ffmpeg import FFmpegConfig
from earntrack_media.modules.transcoding.hls import (
    HLS_PLAYLIST_CONTENT_TYPE,
    HLS_SEGMENT_CONTENT_TYPE,
)
from earntrack_media.modules.transcoding.models import (
    FORMAT_CONTENT_TYPES,
    FORMAT_EXTENSIONS,
    Resolution,
    TranscodeFormat,
)
from earntrack_media.modules.transcoding.repository import TranscodeJobRepository
from earntrack_media.modules.transcoding.service import TranscodingService
from earntrack_media.modules.video.keys import hls_prefix, hls_variant_key, rendition_key
from earntrack_media.pipeline import MediaPipeline, get_worker_pipeline

logger = logging.getLogger(__name__)


@dataclass
class RenditionOutput:
    """Where a finished rendition was stored."""
    output_key: str
    output_size: int
    bitrate: int  # kbps


async def _upload(pipeline: MediaPipeline, path: str, key: str, content_type: str) -> None:
    result = await pipeline.storage.upload_file(path, key, content_type=content_type)
    if not result.success:
        raise StorageError(f"Failed to upload {key}: {result.error_message}")


async def execute_job(pipeline: MediaPipeline, item: TranscodeWorkItem) -> RenditionOutput:
    """Download the source, render one rendition and upload the result.

    All intermediate files live in a temporary directory that is removed on
    exit, whether the job succeeded or not.

    Raises:
        StorageError: Download or upload failed
        TranscodeError: ffmpeg failed
    """
    fmt = TranscodeFormat(item.format)
    resolution = Resolution(item.resolution)

    async with pipeline.storage.download_to_temp(item.source_key) as source_path:
        workdir = os.path.dirname(source_path)

        if fmt == TranscodeFormat.HLS:
            output = await asyncio.to_thread(
                pipeline.packager.package,
                source_path,
                os.path.join(workdir, "hls"),
                resolution,
            )
            prefix = hls_prefix(item.video_id)
            await _upload(pipeline, output.playlist_path,
                          hls_variant_key(item.video_id, resolution), HLS_PLAYLIST_CONTENT_TYPE)
            for segment in output.segment_paths:
                await _upload(pipeline, segment,
                              f"{prefix}{os.path.basename(segment)}", HLS_SEGMENT_CONTENT_TYPE)
            return RenditionOutput(
                output_key=hls_variant_key(item.video_id, resolution),
                output_size=output.total_size,
                bitrate=pipeline.packager.bitrate_kbps(resolution),
            )

        config = FFmpegConfig(
            input_path=source_path,
            output_path=os.path.join(
                workdir, f"{resolution.value}_{fmt.value}.{FORMAT_EXTENSIONS[fmt]}"
            ),
            format=fmt,
            resolution=resolution,
        )
        result = await asyncio.to_thread(pipeline.transcoder.transcode, config)
        if not result.success:
            raise TranscodeError(result.error_message or "Transcode failed")

        key = rendition_key(item.video_id, fmt, resolution)
        await _upload(pipeline, result.output_path, key, FORMAT_CONTENT_TYPES[fmt])
        return RenditionOutput(output_key=key, output_size=result.file_size, bitrate=result.bitrate)


async def refresh_video(pipeline: MediaPipeline, video_id: uuid.UUID) -> None:
    """Re-aggregate a video in a transaction of its own."""
    async with pipeline.session_maker() as session:
        await TranscodingService(session, pipeline).refresh_video_status(video_id)
        await session.commit()


async def process_transcode_job(pipeline: MediaPipeline, item: TranscodeWorkItem) -> dict:
    """Run one transcode job through PENDING -> PROCESSING -> COMPLETED/FAILED.

    Returns a summary dict; job failures are recorded, not raised.
    """
    job_id = str(item.job_id)

    async with pipeline.session_maker() as session:
        repo = TranscodeJobRepository(session)
        claimed = await repo.claim(item.job_id)
        await session.commit()
        if not claimed:
            log_warning(logger, "Transcode job already claimed or settled, skipping", job_id=job_id)
            return {"success": False, "job_id": job_id, "skipped": True}

        log_info(
            logger, "Transcode job started",
            job_id=job_id, video_id=str(item.video_id),
            format=item.format, resolution=item.resolution,
        )

        started = time.monotonic()
        error_message = None
        try:
            output = await execute_job(pipeline, item)
        except Exception as e:
            error_message = str(e) or type(e).__name__
            log_error(logger, "Transcode job failed", e, job_id=job_id, video_id=str(item.video_id))
        elapsed = time.monotonic() - started

        job = await repo.get_by_id(item.job_id)
        if job is None:
            log_warning(logger, "Transcode job deleted while running", job_id=job_id)
            return {"success": False, "job_id": job_id, "error": "Job not found"}

        if error_message is None:
            await repo.complete_job(
                job,
                output_key=output.output_key,
                output_size=output.output_size,
                bitrate=output.bitrate,
            )
        else:
            await repo.fail_job(job, error_message)

        # Siblings re-aggregating the video must see this job settled
        await session.commit()

    TRANSCODE_JOBS_TOTAL.labels(
        format=item.format, resolution=item.resolution, status=job.status.value
    ).inc()
    TRANSCODE_DURATION_SECONDS.labels(format=item.format).observe(elapsed)

    await refresh_video(pipeline, item.video_id)

    log_info(
        logger, "Transcode job settled",
        job_id=job_id, status=job.status.value, duration_seconds=round(elapsed, 3),
    )
    return {
        "success": error_message is None,
        "job_id": job_id,
        "status": job.status.value,
        "output_key": job.output_key,
        "error": error_message,
    }


async def mark_job_failed(pipeline: MediaPipeline, job_id: uuid.UUID, video_id: uuid.UUID, message: str) -> bool:
    """Fail a job that is not settled yet and re-aggregate its video."""
    async with pipeline.session_maker() as session:
        repo = TranscodeJobRepository(session)
        job = await repo.get_by_id(job_id)
        if job is None or job.status.is_terminal:
            return False
        await repo.fail_job(job, message)
        await session.commit()

    await refresh_video(pipeline, video_id)
    return True


class TranscodeTask(MediaTask):
    """Marks the job FAILED when the task dies outside the normal path."""
    abstract = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        super().on_failure(exc, task_id, args, kwargs, einfo)
        if not args:
            return
        item = TranscodeWorkItem.model_validate(args[0])
        try:
            asyncio.run(mark_job_failed(
                get_worker_pipeline(), item.job_id, item.video_id, f"Worker error: {exc}"
            ))
        except Exception as e:
            log_error(logger, "Could not record transcode failure", e, job_id=str(item.job_id))


@celery_app.task(name=TRANSCODE_TASK, bind=True, base=TranscodeTask)
def transcode_task(self: TranscodeTask, payload: dict) -> dict:
    """Transcode one rendition of a video.

    Args:
        payload: ``{jobId, videoId, sourceKey, format, resolution}``
    """
    item = TranscodeWorkItem.model_validate(payload)
    with correlation_scope(str(item.job_id)):
        return asyncio.run(process_transcode_job(get_worker_pipeline(), item))

