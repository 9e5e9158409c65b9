"""Tests for metadata and thumbnail extraction.

**Feature: earntrack-media, Property 7: Extraction Failure Isolation**
"""

import os

from earntrack_media.core.queue import MetadataWorkItem
from earntrack_media.modules.video.keys import thumbnail_key
from earntrack_media.modules.video.models import VideoStatus
from earntrack_media.modules.video.repository import VideoRepository
from earntrack_media.modules.video.tasks import process_metadata_extraction


async def _extract(pipeline, video):
    return await process_metadata_extraction(
        pipeline, MetadataWorkItem(video_id=video.id, source_key=video.source_key)
    )


async def _reload(session_maker, video):
    async with session_maker() as session:
        return await VideoRepository(session).get_by_id(video.id)


class TestMetadataExtraction:

    async def test_probe_and_thumbnail(self, pipeline, session_maker, make_video):
        video = await make_video()

        result = await _extract(pipeline, video)

        assert result["success"] is True
        refreshed = await _reload(session_maker, video)
        assert refreshed.status == VideoStatus.PROCESSING.value
        assert refreshed.duration == 120.5
        assert refreshed.source_codec == "h264"
        assert refreshed.source_resolution == "1920x1080"
        assert refreshed.source_bitrate == 4500000
        assert refreshed.thumbnail_key == thumbnail_key(video.id)
        assert refreshed.thumbnail_url == f"https://cdn.example.com/thumbnails/{video.id}.jpg"
        assert await pipeline.storage.exists(thumbnail_key(video.id))

    async def test_thumbnail_taken_at_tenth_of_duration(self, pipeline, make_video, fake_transcoder):
        video = await make_video()

        await _extract(pipeline, video)

        grab = next(cmd for cmd in fake_transcoder.commands if "-frames:v" in cmd)
        assert grab[grab.index("-ss") + 1] == "12.050"

    async def test_probe_failure_keeps_thumbnail(self, pipeline, session_maker, make_video, fake_transcoder):
        """**Feature: earntrack-media, Property 7: Extraction Failure Isolation**

        A failed probe SHALL NOT prevent the thumbnail from being stored.
        """
        video = await make_video()
        fake_transcoder.probe_error = True

        result = await _extract(pipeline, video)

        assert result["success"] is False
        refreshed = await _reload(session_maker, video)
        assert refreshed.duration is None
        assert refreshed.thumbnail_key == thumbnail_key(video.id)
        assert refreshed.status == VideoStatus.PROCESSING.value

    async def test_thumbnail_failure_keeps_metadata(self, pipeline, session_maker, make_video, fake_transcoder):
        """**Feature: earntrack-media, Property 7: Extraction Failure Isolation**

        A failed thumbnail SHALL NOT prevent metadata from being stored.
        """
        video = await make_video()
        fake_transcoder.thumbnail_error = True

        await _extract(pipeline, video)

        refreshed = await _reload(session_maker, video)
        assert refreshed.duration == 120.5
        assert refreshed.thumbnail_key is None
        assert refreshed.status == VideoStatus.PROCESSING.value

    async def test_missing_source_still_advances(self, pipeline, session_maker, make_video):
        video = await make_video()
        await pipeline.storage.delete_file(video.source_key)

        result = await _extract(pipeline, video)

        assert result["success"] is False
        refreshed = await _reload(session_maker, video)
        assert refreshed.status == VideoStatus.PROCESSING.value

    async def test_does_not_downgrade_ready_video(self, pipeline, session_maker, make_video):
        video = await make_video()
        async with session_maker() as session:
            repo = VideoRepository(session)
            stored = await repo.get_by_id(video.id)
            await repo.advance_status(stored, VideoStatus.READY)
            await session.commit()

        await _extract(pipeline, video)

        refreshed = await _reload(session_maker, video)
        assert refreshed.status == VideoStatus.READY.value

    async def test_temporary_files_removed(self, pipeline, make_video, work_dir):
        video = await make_video()

        await _extract(pipeline, video)

        assert os.listdir(work_dir) == []

    async def test_unavailable_duration_still_stores_thumbnail(self, pipeline, session_maker, make_video, fake_transcoder):
        """**Feature: earntrack-media, Property 7: Extraction Failure Isolation**

        Streams that report ``N/A`` for duration and bitrate SHALL still get a
        thumbnail, grabbed from the first frame.
        """
        video = await make_video()
        fake_transcoder.probe_output = {
            "streams": [{"codec_type": "video", "codec_name": "h264", "width": 1280, "height": 720}],
            "format": {"duration": "N/A", "bit_rate": "N/A", "format_name": "mpegts"},
        }

        result = await _extract(pipeline, video)

        assert result["success"] is True
        refreshed = await _reload(session_maker, video)
        assert refreshed.status == VideoStatus.PROCESSING.value
        assert refreshed.duration is None
        assert refreshed.source_bitrate is None
        assert refreshed.source_resolution == "1280x720"
        assert refreshed.thumbnail_key == thumbnail_key(video.id)
        grab = next(cmd for cmd in fake_transcoder.commands if "-frames:v" in cmd)
        assert grab[grab.index("-ss") + 1] == "0.000"

    async def test_unexpected_errors_still_advance(self, pipeline, session_maker, make_video, fake_transcoder, monkeypatch):
        video = await make_video()

        def broken_probe(input_path):
            raise RuntimeError("unexpected ffprobe output")

        monkeypatch.setattr(fake_transcoder, "probe", broken_probe)

        result = await _extract(pipeline, video)

        assert result["success"] is False
        refreshed = await _reload(session_maker, video)
        assert refreshed.status == VideoStatus.PROCESSING.value
        assert refreshed.duration is None
        assert refreshed.thumbnail_key is None
