"""Shared pytest fixtures.

Provides an in-memory SQLite database, a pipeline wired to local storage
under ``tmp_path``, a recording job queue, an ffmpeg stand-in that writes
placeholder outputs and a mocked CloudFront client.
"""

import io
import json
import os
import subprocess
import uuid
from unittest.mock import MagicMock

# Required settings must exist before the package is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from earntrack_media.core.cdn import CDNInvalidationClient
from earntrack_media.core.config import Settings
from earntrack_media.core.exceptions import TranscodeError
from earntrack_media.core.storage import LocalStorage, StorageConfig, StorageService
from earntrack_media.models import Base
from earntrack_media.modules.transcoding.ffmpeg import FFmpegTranscoder, scale_filter
from earntrack_media.modules.transcoding.hls import HLSPackager
from earntrack_media.modules.transcoding.models import RESOLUTION_PROFILES, Resolution
from earntrack_media.modules.video.repository import VideoRepository
from earntrack_media.pipeline import MediaPipeline

PROBE_OUTPUT = {
    "streams": [
        {"codec_type": "audio", "codec_name": "aac"},
        {"codec_type": "video", "codec_name": "h264", "width": 1920, "height": 1080},
    ],
    "format": {"duration": "120.5", "bit_rate": "4500000", "format_name": "mov,mp4,m4a,3gp,3g2,mj2"},
}


class FakeQueue:
    """Records work items instead of sending them to Celery."""

    def __init__(self):
        self.metadata_items = []
        self.transcode_items = []
        self.fail_transcode = False
        self.fail_metadata = False

    def enqueue_metadata_extraction(self, item) -> str:
        if self.fail_metadata:
            raise ConnectionError("broker unavailable")
        self.metadata_items.append(item)
        return f"task-{len(self.metadata_items)}"

    def enqueue_transcode(self, item) -> str:
        if self.fail_transcode:
            raise ConnectionError("broker unavailable")
        self.transcode_items.append(item)
        return f"task-{len(self.transcode_items)}"


class FakeTranscoder(FFmpegTranscoder):
    """Runs no binaries; writes placeholder files where ffmpeg would.

    Attributes:
        fail_muxers: ``-f`` values whose invocations fail (``mp4``, ``webm``, ``hls``)
        fail_renditions: ``(muxer, Resolution)`` pairs whose invocations fail
        probe_output: JSON document ffprobe reports
        probe_error: Make every ffprobe call fail
        thumbnail_error: Make single-frame grabs fail
    """

    def __init__(self):
        super().__init__(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe")
        self.commands: list[list[str]] = []
        self.fail_muxers: set[str] = set()
        self.fail_renditions: set[tuple[str, Resolution]] = set()
        self.probe_output: dict = PROBE_OUTPUT
        self.probe_error = False
        self.thumbnail_error = False

    def run(self, cmd: list[str]) -> subprocess.CompletedProcess:
        self.commands.append(cmd)

        if cmd[0] == self.ffprobe_path:
            if self.probe_error:
                raise TranscodeError("ffprobe exited with 1: Invalid data found when processing input")
            return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(self.probe_output), stderr="")

        if "-frames:v" in cmd and self.thumbnail_error:
            raise TranscodeError("ffmpeg exited with 1: Output file is empty")

        muxer = cmd[cmd.index("-f") + 1] if "-f" in cmd else None
        if muxer in self.fail_muxers or any(
            muxer == failing and scale_filter(RESOLUTION_PROFILES[resolution]) in cmd
            for failing, resolution in self.fail_renditions
        ):
            raise TranscodeError("ffmpeg exited with 1: Conversion failed!")

        if "-hls_segment_filename" in cmd:
            pattern = cmd[cmd.index("-hls_segment_filename") + 1]
            for index in range(2):
                with open(pattern % index, "wb") as f:
                    f.write(b"\x47" * 188)

        with open(cmd[-1], "wb") as f:
            f.write(b"#EXTM3U\n" if cmd[-1].endswith(".m3u8") else b"rendition")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


@pytest_asyncio.fixture
async def async_engine():
    """In-memory SQLite engine with every table created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        REDIS_URL="redis://localhost:6379/0",
        SECRET_KEY="test-secret-key",
        LOCAL_STORAGE_PATH=str(tmp_path / "storage"),
        TEMP_DIR=str(tmp_path / "work"),
        CDN_ENABLED=True,
        CDN_DOMAIN="cdn.example.com",
        CLOUDFRONT_DISTRIBUTION_ID="EDISTRIBUTION",
        PUBLIC_API_BASE_URL="https://api.example.com",
        MAX_UPLOAD_SIZE=10 * 1024 * 1024,
    )


@pytest.fixture
def work_dir(test_settings) -> str:
    os.makedirs(test_settings.TEMP_DIR, exist_ok=True)
    return test_settings.TEMP_DIR


@pytest.fixture
def cloudfront_client() -> MagicMock:
    client = MagicMock()
    client.create_invalidation.return_value = {"Invalidation": {"Id": "I2J3K4"}}
    return client


@pytest.fixture
def fake_queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def fake_transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def pipeline(test_settings, work_dir, session_maker, fake_queue, fake_transcoder, cloudfront_client) -> MediaPipeline:
    storage = StorageService(
        LocalStorage(StorageConfig.from_settings(test_settings)),
        temp_dir=work_dir,
    )
    return MediaPipeline(
        settings=test_settings,
        storage=storage,
        cdn=CDNInvalidationClient("EDISTRIBUTION", client=cloudfront_client),
        transcoder=fake_transcoder,
        packager=HLSPackager(fake_transcoder, segment_duration=test_settings.HLS_SEGMENT_DURATION),
        queue=fake_queue,
        session_maker=session_maker,
    )


@pytest.fixture
def owner_id() -> uuid.UUID:
    return uuid.UUID("11111111-2222-3333-4444-555555555555")


@pytest.fixture
def make_video(pipeline, session_maker, owner_id):
    """Factory storing a raw upload and its UPLOADING video row."""

    async def _make_video(title: str = "Client walkthrough", owner: uuid.UUID = None, content: bytes = b"raw-video"):
        owner = owner or owner_id
        key = f"videos/{owner}/1700000000000_{uuid.uuid4().hex[:8]}.mp4"
        await pipeline.storage.upload_fileobj(io.BytesIO(content), key, content_type="video/mp4")
        async with session_maker() as session:
            video = await VideoRepository(session).create(
                owner_id=owner,
                title=title,
                source_key=key,
                content_type="video/mp4",
                file_size=len(content),
                original_filename="walkthrough.mp4",
            )
            await session.commit()
        return video

    return _make_video
