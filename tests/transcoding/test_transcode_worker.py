"""Tests for the transcode worker.

**Feature: earntrack-media, Property 6: At-most-once Job Execution**
"""

import dataclasses
import io
import os

import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from earntrack_media.models import Base
from earntrack_media.modules.transcoding.models import Resolution, TranscodeFormat, TranscodeStatus
from earntrack_media.modules.transcoding.repository import TranscodeJobRepository
from earntrack_media.modules.transcoding.service import TranscodingService
from earntrack_media.modules.transcoding.tasks import mark_job_failed, process_transcode_job
from earntrack_media.modules.video.keys import hls_variant_key, rendition_key
from earntrack_media.modules.video.models import VideoStatus
from earntrack_media.modules.video.repository import VideoRepository


async def _request(pipeline, session_maker, video, owner_id, formats, resolutions):
    async with session_maker() as session:
        return await TranscodingService(session, pipeline).request_transcode(
            video.id, owner_id, formats=formats, resolutions=resolutions
        )


async def _run_all(pipeline, fake_queue):
    return [await process_transcode_job(pipeline, item) for item in fake_queue.transcode_items]


async def _load(session_maker, video):
    async with session_maker() as session:
        jobs = await TranscodeJobRepository(session).list_for_video(video.id)
        refreshed = await VideoRepository(session).get_by_id(video.id)
    return refreshed, jobs


class TestSuccessfulJobs:

    async def test_progressive_rendition_is_stored(self, pipeline, session_maker, make_video, owner_id, fake_queue):
        video = await make_video()
        await _request(pipeline, session_maker, video, owner_id, [TranscodeFormat.MP4], [Resolution.HD_720P])

        results = await _run_all(pipeline, fake_queue)

        assert results[0]["success"] is True
        refreshed, jobs = await _load(session_maker, video)
        job = jobs[0]
        assert job.status == TranscodeStatus.COMPLETED
        assert job.output_key == rendition_key(video.id, TranscodeFormat.MP4, Resolution.HD_720P)
        assert job.output_size > 0
        assert job.bitrate == 2500
        assert job.started_at is not None and job.completed_at is not None
        assert await pipeline.storage.exists(job.output_key)

    async def test_hls_variant_and_segments_are_stored(self, pipeline, session_maker, make_video, owner_id, fake_queue):
        video = await make_video()
        await _request(pipeline, session_maker, video, owner_id, [TranscodeFormat.HLS], [Resolution.FHD_1080P])

        await _run_all(pipeline, fake_queue)

        _, jobs = await _load(session_maker, video)
        assert jobs[0].output_key == hls_variant_key(video.id, Resolution.FHD_1080P)
        assert await pipeline.storage.list_files(f"hls/{video.id}/") == [
            f"hls/{video.id}/FHD_1080P_000.ts",
            f"hls/{video.id}/FHD_1080P_001.ts",
            f"hls/{video.id}/playlist_FHD_1080P.m3u8",
        ]

    async def test_video_ready_when_all_jobs_complete(self, pipeline, session_maker, make_video, owner_id, fake_queue):
        video = await make_video()
        await _request(pipeline, session_maker, video, owner_id, None, None)

        await _run_all(pipeline, fake_queue)

        refreshed, jobs = await _load(session_maker, video)
        assert len(jobs) == 6
        assert all(job.status == TranscodeStatus.COMPLETED for job in jobs)
        assert refreshed.status == VideoStatus.READY.value
        assert refreshed.cdn_url == f"https://cdn.example.com/videos/transcoded/{video.id}/"
        assert refreshed.processed_at is not None

    async def test_temporary_files_removed(self, pipeline, session_maker, make_video, owner_id, fake_queue, work_dir):
        video = await make_video()
        await _request(pipeline, session_maker, video, owner_id, None, [Resolution.SD_480P])

        await _run_all(pipeline, fake_queue)

        assert os.listdir(work_dir) == []


class TestFailedJobs:

    async def test_failure_is_isolated_to_its_job(self, pipeline, session_maker, make_video, owner_id, fake_queue, fake_transcoder):
        video = await make_video()
        fake_transcoder.fail_muxers.add("webm")
        await _request(
            pipeline, session_maker, video, owner_id,
            [TranscodeFormat.MP4, TranscodeFormat.WEBM], [Resolution.HD_720P],
        )

        results = await _run_all(pipeline, fake_queue)

        assert [r["success"] for r in results] == [True, False]
        refreshed, jobs = await _load(session_maker, video)
        by_format = {job.format: job for job in jobs}
        assert by_format[TranscodeFormat.MP4].status == TranscodeStatus.COMPLETED
        assert by_format[TranscodeFormat.WEBM].status == TranscodeStatus.FAILED
        assert "Conversion failed" in by_format[TranscodeFormat.WEBM].error_message
        assert refreshed.status == VideoStatus.READY.value

    async def test_status_breakdown_counts_every_state(self, pipeline, session_maker, make_video, owner_id, fake_queue, fake_transcoder):
        video = await make_video()
        fake_transcoder.fail_muxers.add("webm")
        await _request(
            pipeline, session_maker, video, owner_id,
            [TranscodeFormat.MP4, TranscodeFormat.WEBM], [Resolution.HD_720P],
        )
        await process_transcode_job(pipeline, fake_queue.transcode_items[1])

        async with session_maker() as session:
            breakdown = await TranscodingService(session, pipeline).get_status_breakdown(video.id, owner_id)

        assert len(breakdown.jobs) == 2
        assert breakdown.counts == {
            TranscodeStatus.PENDING: 1,
            TranscodeStatus.PROCESSING: 0,
            TranscodeStatus.COMPLETED: 0,
            TranscodeStatus.FAILED: 1,
        }

    async def test_video_failed_when_every_job_fails(self, pipeline, session_maker, make_video, owner_id, fake_queue, fake_transcoder, work_dir):
        video = await make_video()
        fake_transcoder.fail_muxers.update({"mp4", "hls"})
        await _request(
            pipeline, session_maker, video, owner_id,
            [TranscodeFormat.MP4, TranscodeFormat.HLS], [Resolution.HD_720P],
        )

        await _run_all(pipeline, fake_queue)

        refreshed, jobs = await _load(session_maker, video)
        assert all(job.status == TranscodeStatus.FAILED for job in jobs)
        assert refreshed.status == VideoStatus.FAILED.value
        assert refreshed.cdn_url is None
        assert os.listdir(work_dir) == []

    async def test_missing_source_fails_job(self, pipeline, session_maker, make_video, owner_id, fake_queue):
        video = await make_video()
        await pipeline.storage.delete_file(video.source_key)
        await _request(pipeline, session_maker, video, owner_id, [TranscodeFormat.MP4], [Resolution.HD_720P])

        results = await _run_all(pipeline, fake_queue)

        assert results[0]["success"] is False
        _, jobs = await _load(session_maker, video)
        assert jobs[0].status == TranscodeStatus.FAILED
        assert "Failed to download" in jobs[0].error_message

    async def test_long_error_is_truncated(self, pipeline, session_maker, make_video, owner_id, fake_queue):
        video = await make_video()
        jobs = await _request(pipeline, session_maker, video, owner_id, [TranscodeFormat.MP4], [Resolution.HD_720P])

        assert await mark_job_failed(pipeline, jobs[0].id, video.id, "x" * 10000) is True

        _, stored = await _load(session_maker, video)
        assert len(stored[0].error_message) == 4000


class TestAtMostOnce:

    async def test_redelivered_message_is_skipped(self, pipeline, session_maker, make_video, owner_id, fake_queue, fake_transcoder):
        """**Feature: earntrack-media, Property 6: At-most-once Job Execution**

        A job SHALL be executed by at most one delivery of its message.
        """
        video = await make_video()
        await _request(pipeline, session_maker, video, owner_id, [TranscodeFormat.MP4], [Resolution.HD_720P])
        item = fake_queue.transcode_items[0]

        first = await process_transcode_job(pipeline, item)
        commands_after_first = len(fake_transcoder.commands)
        second = await process_transcode_job(pipeline, item)

        assert first["success"] is True
        assert second["skipped"] is True
        assert len(fake_transcoder.commands) == commands_after_first

    async def test_claim_only_once(self, pipeline, session_maker, make_video, owner_id):
        video = await make_video()
        jobs = await _request(pipeline, session_maker, video, owner_id, [TranscodeFormat.MP4], [Resolution.HD_720P])

        async with session_maker() as session:
            repo = TranscodeJobRepository(session)
            assert await repo.claim(jobs[0].id) is True
            assert await repo.claim(jobs[0].id) is False
            await session.commit()

    async def test_mark_failed_ignores_settled_job(self, pipeline, session_maker, make_video, owner_id, fake_queue):
        video = await make_video()
        jobs = await _request(pipeline, session_maker, video, owner_id, [TranscodeFormat.MP4], [Resolution.HD_720P])
        await _run_all(pipeline, fake_queue)

        assert await mark_job_failed(pipeline, jobs[0].id, video.id, "Worker lost") is False

        _, stored = await _load(session_maker, video)
        assert stored[0].status == TranscodeStatus.COMPLETED


@pytest_asyncio.fixture
async def shared_db_pipeline(pipeline, tmp_path):
    """Pipeline on a file database plus a session maker on a second engine.

    The second engine sees only committed data, like another worker would.
    """
    url = f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}"
    worker_engine = create_async_engine(url)
    observer_engine = create_async_engine(url)
    async with worker_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield (
        dataclasses.replace(pipeline, session_maker=async_sessionmaker(worker_engine, expire_on_commit=False)),
        async_sessionmaker(observer_engine, expire_on_commit=False),
    )

    await worker_engine.dispose()
    await observer_engine.dispose()


async def _stored_video(pipeline, owner_id):
    key = f"videos/{owner_id}/1700000000000_shared.mp4"
    await pipeline.storage.upload_fileobj(io.BytesIO(b"raw-video"), key, content_type="video/mp4")
    async with pipeline.session_maker() as session:
        video = await VideoRepository(session).create(
            owner_id=owner_id,
            title="Shared database",
            source_key=key,
            content_type="video/mp4",
            file_size=9,
        )
        await session.commit()
    return video


def _observe_aggregation(monkeypatch, observer):
    """Record every job status another connection sees when aggregation starts."""
    seen = []
    original = TranscodingService.refresh_video_status

    async def observed(self, video_id):
        async with observer() as session:
            jobs = await TranscodeJobRepository(session).list_for_video(video_id)
        seen.append([job.status for job in jobs])
        return await original(self, video_id)

    monkeypatch.setattr(TranscodingService, "refresh_video_status", observed)
    return seen


class TestSettledBeforeAggregation:

    async def test_completed_job_visible_to_other_workers(self, shared_db_pipeline, owner_id, fake_queue, monkeypatch):
        """**Feature: earntrack-media, Property 3: Video Status Aggregation**

        When a worker re-aggregates its video, its own job's terminal state
        SHALL already be committed, so the last job to settle always sees
        every sibling settled.
        """
        pipeline, observer = shared_db_pipeline
        video = await _stored_video(pipeline, owner_id)
        await _request(pipeline, pipeline.session_maker, video, owner_id, [TranscodeFormat.MP4], [Resolution.HD_720P])
        seen = _observe_aggregation(monkeypatch, observer)

        await _run_all(pipeline, fake_queue)

        assert seen == [[TranscodeStatus.COMPLETED]]
        async with observer() as session:
            stored = await VideoRepository(session).get_by_id(video.id)
        assert stored.status == VideoStatus.READY.value

    async def test_failed_job_visible_to_other_workers(self, shared_db_pipeline, owner_id, fake_queue, fake_transcoder, monkeypatch):
        pipeline, observer = shared_db_pipeline
        fake_transcoder.fail_muxers.add("mp4")
        video = await _stored_video(pipeline, owner_id)
        await _request(pipeline, pipeline.session_maker, video, owner_id, [TranscodeFormat.MP4], [Resolution.HD_720P])
        seen = _observe_aggregation(monkeypatch, observer)

        await _run_all(pipeline, fake_queue)

        assert seen == [[TranscodeStatus.FAILED]]
        async with observer() as session:
            stored = await VideoRepository(session).get_by_id(video.id)
        assert stored.status == VideoStatus.FAILED.value

    async def test_mark_failed_commits_before_aggregation(self, shared_db_pipeline, owner_id, monkeypatch):
        pipeline, observer = shared_db_pipeline
        video = await _stored_video(pipeline, owner_id)
        jobs = await _request(pipeline, pipeline.session_maker, video, owner_id, [TranscodeFormat.MP4], [Resolution.HD_720P])
        seen = _observe_aggregation(monkeypatch, observer)

        assert await mark_job_failed(pipeline, jobs[0].id, video.id, "Worker lost") is True

        assert seen == [[TranscodeStatus.FAILED]]
