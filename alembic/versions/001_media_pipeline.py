"""Media pipeline models migration.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates videos, video_transcode_jobs and video_access_logs.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "videos",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("source_key", sa.String(1024), nullable=False),
        sa.Column("original_filename", sa.String(512), nullable=True),
        sa.Column("content_type", sa.String(100), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("source_codec", sa.String(50), nullable=True),
        sa.Column("source_format", sa.String(100), nullable=True),
        sa.Column("source_resolution", sa.String(20), nullable=True),
        sa.Column("source_bitrate", sa.BigInteger(), nullable=True),
        sa.Column("thumbnail_key", sa.String(1024), nullable=True),
        sa.Column("thumbnail_url", sa.String(2048), nullable=True),
        sa.Column("cdn_url", sa.String(2048), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="UPLOADING"),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "uploaded_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_videos_owner_id"), "videos", ["owner_id"], unique=False)
    op.create_index(op.f("ix_videos_status"), "videos", ["status"], unique=False)

    op.create_table(
        "video_transcode_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("video_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "format",
            sa.Enum("MP4", "WEBM", "HLS", name="transcode_format"),
            nullable=False,
        ),
        sa.Column(
            "resolution",
            sa.Enum("SD_480P", "HD_720P", "FHD_1080P", "QHD_2K", "UHD_4K", name="transcode_resolution"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("PENDING", "PROCESSING", "COMPLETED", "FAILED", name="transcode_status"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("celery_task_id", sa.String(255), nullable=True),
        sa.Column("output_key", sa.String(1024), nullable=True),
        sa.Column("output_size", sa.BigInteger(), nullable=True),
        sa.Column("bitrate", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["video_id"],
            ["videos.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_video_transcode_jobs_video_id"),
        "video_transcode_jobs",
        ["video_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_video_transcode_jobs_status"),
        "video_transcode_jobs",
        ["status"],
        unique=False,
    )

    op.create_table(
        "video_access_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("video_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=False),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("watch_time", sa.Float(), nullable=True),
        sa.Column(
            "viewed_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["video_id"],
            ["videos.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_video_access_logs_video_id"),
        "video_access_logs",
        ["video_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_video_access_logs_viewed_at"),
        "video_access_logs",
        ["viewed_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_video_access_logs_viewed_at"), table_name="video_access_logs")
    op.drop_index(op.f("ix_video_access_logs_video_id"), table_name="video_access_logs")
    op.drop_table("video_access_logs")
    op.drop_index(op.f("ix_video_transcode_jobs_status"), table_name="video_transcode_jobs")
    op.drop_index(op.f("ix_video_transcode_jobs_video_id"), table_name="video_transcode_jobs")
    op.drop_table("video_transcode_jobs")
    op.drop_index(op.f("ix_videos_status"), table_name="videos")
    op.drop_index(op.f("ix_videos_owner_id"), table_name="videos")
    op.drop_table("videos")

    op.execute("DROP TYPE IF EXISTS transcode_status")
    op.execute("DROP TYPE IF EXISTS transcode_resolution")
    op.execute("DROP TYPE IF EXISTS transcode_format")
