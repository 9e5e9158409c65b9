"""Repository for transcode job database operations."""

import uuid
from collections import defaultdict
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from earntrack_media.core.exceptions import InvalidStateTransitionError
from earntrack_media.modules.transcoding.models import (
    Resolution,
    TranscodeFormat,
    TranscodeJob,
    TranscodeStatus,
    utcnow,
)

# Longest error message stored on a job
MAX_ERROR_LENGTH = 4000


class TranscodeJobRepository:
    """Repository for TranscodeJob operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_many(
        self,
        video_id: uuid.UUID,
        targets: Iterable[tuple[TranscodeFormat, Resolution]],
    ) -> list[TranscodeJob]:
        """Create one PENDING job per (format, resolution) target."""
        jobs = [
            TranscodeJob(
                video_id=video_id,
                format=fmt,
                resolution=resolution,
                status=TranscodeStatus.PENDING,
                created_at=utcnow(),
            )
            for fmt, resolution in targets
        ]
        self.session.add_all(jobs)
        await self.session.flush()
        return jobs

    async def get_by_id(self, job_id: uuid.UUID) -> Optional[TranscodeJob]:
        result = await self.session.execute(
            select(TranscodeJob)
            .where(TranscodeJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_video(
        self,
        video_id: uuid.UUID,
        status: Optional[TranscodeStatus] = None,
        fmt: Optional[TranscodeFormat] = None,
    ) -> list[TranscodeJob]:
        query = select(TranscodeJob).where(TranscodeJob.video_id == video_id)
        if status is not None:
            query = query.where(TranscodeJob.status == status)
        if fmt is not None:
            query = query.where(TranscodeJob.format == fmt)
        result = await self.session.execute(query.order_by(TranscodeJob.created_at, TranscodeJob.id))
        return list(result.scalars().all())

    async def list_completed_for_videos(
        self,
        video_ids: list[uuid.UUID],
    ) -> dict[uuid.UUID, list[TranscodeJob]]:
        if not video_ids:
            return {}
        result = await self.session.execute(
            select(TranscodeJob)
            .where(
                TranscodeJob.video_id.in_(video_ids),
                TranscodeJob.status == TranscodeStatus.COMPLETED,
            )
            .order_by(TranscodeJob.created_at, TranscodeJob.id)
        )
        grouped: dict[uuid.UUID, list[TranscodeJob]] = defaultdict(list)
        for job in result.scalars().all():
            grouped[job.video_id].append(job)
        return dict(grouped)

    async def set_task_id(self, job: TranscodeJob, task_id: str) -> None:
        job.celery_task_id = task_id
        await self.session.flush()

    async def claim(self, job_id: uuid.UUID) -> bool:
        """Atomically move a job from PENDING to PROCESSING.

        Returns False when the job is missing or no longer PENDING, which is
        how a redelivered message is recognised.
        """
        result = await self.session.execute(
            update(TranscodeJob)
            .where(
                TranscodeJob.id == job_id,
                TranscodeJob.status == TranscodeStatus.PENDING,
            )
            .values(status=TranscodeStatus.PROCESSING, started_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _check_transition(self, job: TranscodeJob, target: TranscodeStatus) -> None:
        if not TranscodeStatus.can_transition(job.status, target):
            raise InvalidStateTransitionError(job.status, target)

    async def complete_job(
        self,
        job: TranscodeJob,
        output_key: str,
        output_size: int,
        bitrate: int,
    ) -> TranscodeJob:
        self._check_transition(job, TranscodeStatus.COMPLETED)
        job.status = TranscodeStatus.COMPLETED
        job.output_key = output_key
        job.output_size = output_size
        job.bitrate = bitrate
        job.completed_at = utcnow()
        await self.session.flush()
        return job

    async def fail_job(self, job: TranscodeJob, error_message: str) -> TranscodeJob:
        self._check_transition(job, TranscodeStatus.FAILED)
        job.status = TranscodeStatus.FAILED
        job.error_message = error_message[:MAX_ERROR_LENGTH]
        job.completed_at = utcnow()
        await self.session.flush()
        return job
