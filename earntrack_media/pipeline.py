"""Media pipeline wiring.

``MediaPipeline`` bundles the object store, CDN client, ffmpeg adapter,
HLS packager, job queue and session factory. The API builds one in its
lifespan and hands it to request handlers; each Celery worker process
builds its own when it starts.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from celery.signals import worker_process_init
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from earntrack_media.core.cdn import CDNInvalidationClient
from earntrack_media.core.celery_app import celery_app
from earntrack_media.core.config import Settings, settings as default_settings
from earntrack_media.core.database import async_session_maker, create_engine_and_sessionmaker
from earntrack_media.core.queue import JobQueue
from earntrack_media.core.storage import StorageConfig, StorageService, create_storage_backend
from earntrack_media.modules.transcoding.ffmpeg import FFmpegTranscoder
from earntrack_media.modules.transcoding.hls import HLSPackager

logger = logging.getLogger(__name__)


@dataclass
class MediaPipeline:
    """Collaborators shared by the API handlers and the workers."""
    settings: Settings
    storage: StorageService
    cdn: CDNInvalidationClient
    transcoder: FFmpegTranscoder
    packager: HLSPackager
    queue: JobQueue
    session_maker: async_sessionmaker[AsyncSession]

    def master_playlist_url(self, video_id) -> str:
        base = self.settings.PUBLIC_API_BASE_URL.rstrip("/")
        return f"{base}{self.settings.API_V1_PREFIX}/videos/{video_id}/stream/master.m3u8"


def build_pipeline(
    settings: Settings = default_settings,
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
) -> MediaPipeline:
    """Build a pipeline from settings."""
    transcoder = FFmpegTranscoder(
        ffmpeg_path=settings.FFMPEG_PATH,
        ffprobe_path=settings.FFPROBE_PATH,
    )
    return MediaPipeline(
        settings=settings,
        storage=StorageService(
            create_storage_backend(StorageConfig.from_settings(settings)),
            temp_dir=settings.TEMP_DIR,
        ),
        cdn=CDNInvalidationClient(
            distribution_id=settings.CLOUDFRONT_DISTRIBUTION_ID,
            region=settings.STORAGE_REGION,
            access_key=settings.STORAGE_ACCESS_KEY,
            secret_key=settings.STORAGE_SECRET_KEY,
        ),
        transcoder=transcoder,
        packager=HLSPackager(transcoder, segment_duration=settings.HLS_SEGMENT_DURATION),
        queue=JobQueue(celery_app, settings.MEDIA_QUEUE_NAME),
        session_maker=session_maker or async_session_maker,
    )


def get_pipeline(request: Request) -> MediaPipeline:
    """FastAPI dependency returning the pipeline built at startup."""
    return request.app.state.pipeline


_worker_pipeline: Optional[MediaPipeline] = None


@worker_process_init.connect
def init_worker_pipeline(**kwargs) -> None:
    """Build the worker process's pipeline.

    Every task runs its coroutine in a fresh event loop, so the worker uses
    an unpooled engine.
    """
    global _worker_pipeline
    _, session_maker = create_engine_and_sessionmaker(
        default_settings.DATABASE_URL, null_pool=True
    )
    _worker_pipeline = build_pipeline(default_settings, session_maker=session_maker)
    logger.info("Worker pipeline initialized")


def get_worker_pipeline() -> MediaPipeline:
    """Pipeline of the current worker process."""
    if _worker_pipeline is None:
        # Solo/eager pools never fire worker_process_init
        init_worker_pipeline()
    return _worker_pipeline
