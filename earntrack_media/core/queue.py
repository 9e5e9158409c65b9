"""Job queue producer.

Work items travel as JSON with camelCase keys:
``{videoId, sourceKey}`` for metadata extraction and
``{jobId, videoId, sourceKey, format, resolution}`` for transcoding.
"""

import logging
import uuid

from celery import Celery

from earntrack_media.core.schemas import CamelModel

logger = logging.getLogger(__name__)

EXTRACT_METADATA_TASK = "media.extract_metadata"
TRANSCODE_TASK = "media.transcode"


class WorkItem(CamelModel):
    """Base of queue payloads."""

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class MetadataWorkItem(WorkItem):
    """Metadata and thumbnail extraction for a freshly uploaded asset."""

    video_id: uuid.UUID
    source_key: str


class TranscodeWorkItem(WorkItem):
    """One (format, resolution) rendition of an asset."""

    job_id: uuid.UUID
    video_id: uuid.UUID
    source_key: str
    format: str
    resolution: str


class JobQueue:
    """Sends work items to the worker pool through Celery."""

    def __init__(self, app: Celery, queue_name: str):
        self.app = app
        self.queue_name = queue_name

    def _send(self, task_name: str, item: WorkItem) -> str:
        result = self.app.send_task(task_name, args=[item.to_wire()], queue=self.queue_name)
        logger.debug("Work item enqueued", extra={"task": task_name, "task_id": result.id})
        return result.id

    def enqueue_metadata_extraction(self, item: MetadataWorkItem) -> str:
        """Enqueue metadata extraction. Returns the Celery task id."""
        return self._send(EXTRACT_METADATA_TASK, item)

    def enqueue_transcode(self, item: TranscodeWorkItem) -> str:
        """Enqueue one transcode job. Returns the Celery task id."""
        return self._send(TRANSCODE_TASK, item)
