"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "EarnTrack Media API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False

    # Database - REQUIRED
    DATABASE_URL: str
    DATABASE_ECHO: bool = False

    # Redis - REQUIRED
    REDIS_URL: str

    # Security - REQUIRED (no defaults for sensitive values)
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"

    # CORS
    CORS_ORIGINS: list[str] = []

    # Storage Configuration
    # STORAGE_BACKEND: local, s3, minio
    STORAGE_BACKEND: str = "local"

    # Local Storage (when STORAGE_BACKEND=local)
    LOCAL_STORAGE_PATH: str = "./storage"

    # S3/MinIO/Compatible Storage (when STORAGE_BACKEND=s3 or minio)
    STORAGE_BUCKET: str = "earntrack-videos"
    STORAGE_REGION: str = "us-east-1"
    STORAGE_ACCESS_KEY: str = ""
    STORAGE_SECRET_KEY: str = ""
    STORAGE_ENDPOINT_URL: Optional[str] = None  # Required for MinIO
    STORAGE_USE_SSL: bool = True

    # CDN Configuration (optional, for any backend)
    CDN_DOMAIN: Optional[str] = None
    CDN_ENABLED: bool = False
    CLOUDFRONT_DISTRIBUTION_ID: Optional[str] = None

    # Ingestion
    MAX_UPLOAD_SIZE: int = 2 * 1024 * 1024 * 1024  # 2 GiB
    ALLOWED_VIDEO_MIME_TYPES: list[str] = [
        "video/mp4",
        "video/mpeg",
        "video/quicktime",
        "video/x-msvideo",
        "video/x-ms-wmv",
        "video/webm",
    ]

    # Celery
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""
    MEDIA_QUEUE_NAME: str = "video-transcode"
    QUEUE_VISIBILITY_TIMEOUT: int = 43200  # seconds

    # Transcoding
    TRANSCODE_CONCURRENCY: int = 2
    TRANSCODE_TASK_TIME_LIMIT: Optional[int] = None  # seconds, unset = no limit
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    TEMP_DIR: Optional[str] = None
    HLS_SEGMENT_DURATION: int = 10
    THUMBNAIL_SIZE: str = "1280x720"
    THUMBNAIL_POSITION: float = 0.1  # fraction of duration

    # URLs
    SIGNED_URL_EXPIRE_SECONDS: int = 3600
    PUBLIC_API_BASE_URL: str = ""

    # Geolocation for access logs
    GEOLOCATION_ENABLED: bool = False
    GEOIP_DB_PATH: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
