"""Celery application configuration.

Transcoding is CPU and memory heavy, so each worker runs a fixed number of
processes and takes one message at a time. Messages are acknowledged after
the task returns, giving at-least-once delivery.
"""

import logging

from celery import Celery, Task

from earntrack_media.core.config import settings

logger = logging.getLogger(__name__)

celery_app = Celery(
    "earntrack_media",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
    include=[
        "earntrack_media.modules.video.tasks",
        "earntrack_media.modules.transcoding.tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_default_queue=settings.MEDIA_QUEUE_NAME,
    task_routes={"media.*": {"queue": settings.MEDIA_QUEUE_NAME}},
    worker_concurrency=settings.TRANSCODE_CONCURRENCY,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Must outlive the longest transcode or Redis redelivers the message
    broker_transport_options={"visibility_timeout": settings.QUEUE_VISIBILITY_TIMEOUT},
)

if settings.TRANSCODE_TASK_TIME_LIMIT:
    celery_app.conf.task_time_limit = settings.TRANSCODE_TASK_TIME_LIMIT


class MediaTask(Task):
    """Base task for pipeline work.

    Pipeline tasks record their own failures; anything reaching
    ``on_failure`` escaped that handling and is only logged here.
    """
    abstract = True
    max_retries = 0

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(
            "Media task crashed",
            exc_info=exc,
            extra={"task": self.name, "task_id": task_id},
        )
