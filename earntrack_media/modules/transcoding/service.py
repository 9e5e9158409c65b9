"""Transcode orchestration.

Fans a transcode request out into one job per (format, resolution),
enqueues every job independently and folds settled jobs back into the
video's status. Also serves the HLS views derived from completed jobs.
"""

import asyncio
import itertools
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from earntrack_media.core.exceptions import NotFoundError
from earntrack_media.core.logging import log_error, log_info
from earntrack_media.core.metrics import VIDEO_STATUS_TRANSITIONS_TOTAL
from earntrack_media.core.queue import TranscodeWorkItem
from earntrack_media.modules.transcoding.hls import HLSVariant, build_master_playlist
from earntrack_media.modules.transcoding.models import (
    DEFAULT_FORMATS,
    DEFAULT_RESOLUTIONS,
    RESOLUTION_PROFILES,
    Resolution,
    TranscodeFormat,
    TranscodeJob,
    TranscodeStatus,
    utcnow,
)
from earntrack_media.modules.transcoding.repository import TranscodeJobRepository
from earntrack_media.modules.video.keys import transcoded_prefix
from earntrack_media.modules.video.models import Video, VideoStatus
from earntrack_media.modules.video.repository import VideoRepository

logger = logging.getLogger(__name__)


def plan_jobs(
    formats: Optional[Sequence[TranscodeFormat]] = None,
    resolutions: Optional[Sequence[Resolution]] = None,
) -> list[tuple[TranscodeFormat, Resolution]]:
    """Every (format, resolution) pair of a request, duplicates removed."""
    formats = list(dict.fromkeys(formats or DEFAULT_FORMATS))
    resolutions = list(dict.fromkeys(resolutions or DEFAULT_RESOLUTIONS))
    return list(itertools.product(formats, resolutions))


def aggregate_status(statuses: Iterable[TranscodeStatus]) -> Optional[VideoStatus]:
    """Video status implied by its jobs' statuses.

    None while any job is unsettled (or there are no jobs); otherwise READY
    if at least one job completed, else FAILED.
    """
    statuses = list(statuses)
    if not statuses or not all(status.is_terminal for status in statuses):
        return None
    if TranscodeStatus.COMPLETED in statuses:
        return VideoStatus.READY
    return VideoStatus.FAILED


@dataclass
class StatusBreakdown:
    video: Video
    jobs: list[TranscodeJob]
    counts: dict[TranscodeStatus, int]


class TranscodingService:
    """Service for transcode requests, job status and streaming playlists."""

    def __init__(self, session: AsyncSession, pipeline):
        self.session = session
        self.pipeline = pipeline
        self.video_repo = VideoRepository(session)
        self.job_repo = TranscodeJobRepository(session)

    async def request_transcode(
        self,
        video_id: uuid.UUID,
        owner_id: uuid.UUID,
        formats: Optional[Sequence[TranscodeFormat]] = None,
        resolutions: Optional[Sequence[Resolution]] = None,
    ) -> list[TranscodeJob]:
        """Create and enqueue one job per requested rendition.

        Returns as soon as the jobs are enqueued. A job that cannot be
        enqueued is marked FAILED; its siblings are unaffected.
        """
        video = await self.video_repo.get_owned(video_id, owner_id)
        jobs = await self.job_repo.create_many(video.id, plan_jobs(formats, resolutions))
        # Workers look the rows up, so they must be visible before dispatch
        await self.session.commit()

        for job in jobs:
            item = TranscodeWorkItem(
                job_id=job.id,
                video_id=video.id,
                source_key=video.source_key,
                format=job.format.value,
                resolution=job.resolution.value,
            )
            try:
                task_id = await asyncio.to_thread(self.pipeline.queue.enqueue_transcode, item)
            except Exception as e:
                log_error(
                    logger, "Failed to enqueue transcode job", e,
                    video_id=str(video.id), job_id=str(job.id),
                )
                await self.job_repo.fail_job(job, f"Failed to enqueue: {e}")
                continue
            await self.job_repo.set_task_id(job, task_id)

        await self.session.commit()
        # Settles the video only when every enqueue failed
        await self.refresh_video_status(video.id)
        await self.session.commit()

        log_info(
            logger, "Transcode jobs created",
            video_id=str(video.id), job_count=len(jobs),
        )
        return jobs

    async def refresh_video_status(self, video_id: uuid.UUID) -> Optional[VideoStatus]:
        """Re-derive the video status from all of its jobs.

        Safe to call any number of times: it re-reads every job and does
        nothing until all of them have settled.
        """
        video = await self.video_repo.get_by_id(video_id)
        if video is None:
            return None

        jobs = await self.job_repo.list_for_video(video_id)
        target = aggregate_status(job.status for job in jobs)
        if target is None:
            return None

        cdn_url = None
        if target == VideoStatus.READY:
            cdn_url = self.pipeline.storage.get_public_url(transcoded_prefix(video_id))

        changed = await self.video_repo.advance_status(
            video, target, processed_at=utcnow(), cdn_url=cdn_url
        )
        if changed:
            VIDEO_STATUS_TRANSITIONS_TOTAL.labels(status=target.value).inc()
            log_info(logger, "Video status aggregated", video_id=str(video_id), status=target.value)
        return VideoStatus(video.status)

    async def get_status_breakdown(self, video_id: uuid.UUID, owner_id: uuid.UUID) -> StatusBreakdown:
        video = await self.video_repo.get_owned(video_id, owner_id)
        jobs = await self.job_repo.list_for_video(video.id)
        counts = {status: 0 for status in TranscodeStatus}
        for job in jobs:
            counts[job.status] += 1
        return StatusBreakdown(video=video, jobs=jobs, counts=counts)

    async def get_hls_variants(self, video_id: uuid.UUID) -> list[HLSVariant]:
        """Variants of every COMPLETED HLS job, one per resolution.

        Raises:
            NotFoundError: If the video is unknown or no HLS job has completed
        """
        video = await self.video_repo.get_by_id(video_id)
        if video is None:
            raise NotFoundError("Video not found")

        jobs = await self.job_repo.list_for_video(
            video_id, status=TranscodeStatus.COMPLETED, fmt=TranscodeFormat.HLS
        )
        # Repeated requests can complete the same resolution twice; keep the newest
        by_resolution: dict[Resolution, TranscodeJob] = {}
        for job in jobs:
            if job.output_key:
                by_resolution[job.resolution] = job

        if not by_resolution:
            raise NotFoundError("HLS stream not available yet")

        return sorted(
            (
                HLSVariant(
                    resolution=resolution,
                    uri=self.pipeline.storage.get_public_url(job.output_key),
                )
                for resolution, job in by_resolution.items()
            ),
            key=lambda v: RESOLUTION_PROFILES[v.resolution].bandwidth,
        )

    async def render_master_playlist(self, video_id: uuid.UUID) -> str:
        return build_master_playlist(await self.get_hls_variants(video_id))
