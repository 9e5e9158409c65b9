"""Imports every model so ``Base.metadata`` knows all tables."""

from earntrack_media.core.database import Base
from earntrack_media.modules.analytics.models import VideoAccessLog
from earntrack_media.modules.transcoding.models import TranscodeJob
from earntrack_media.modules.video.models import Video

__all__ = ["Base", "Video", "TranscodeJob", "VideoAccessLog"]
