"""Video API router.

Upload, listing, detail, signed URL and deletion of video assets.
"""

import os
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from earntrack_media.core.database import get_db
from earntrack_media.core.exceptions import MediaPipelineError, to_http_exception
from earntrack_media.core.schemas import MessageResponse
from earntrack_media.core.security import get_current_owner_id
from earntrack_media.modules.video.schemas import (
    Pagination,
    SignedUrlResponse,
    UploadResponse,
    VideoDetailResponse,
    VideoListResponse,
    VideoResponse,
    VideoSummary,
)
from earntrack_media.modules.video.service import VideoService
from earntrack_media.pipeline import MediaPipeline, get_pipeline

router = APIRouter(prefix="/videos", tags=["videos"])


def _upload_size(file: UploadFile) -> int:
    if file.size is not None:
        return file.size
    file.file.seek(0, os.SEEK_END)
    size = file.file.tell()
    file.file.seek(0)
    return size


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_video(
    title: str = Form(...),
    description: Optional[str] = Form(None),
    file: UploadFile = File(...),
    owner_id: uuid.UUID = Depends(get_current_owner_id),
    db: AsyncSession = Depends(get_db),
    pipeline: MediaPipeline = Depends(get_pipeline),
):
    """Upload a video file and start metadata extraction."""
    service = VideoService(db, pipeline)
    try:
        video = await service.upload_video(
            owner_id=owner_id,
            fileobj=file.file,
            filename=file.filename or "upload",
            content_type=file.content_type,
            file_size=_upload_size(file),
            title=title,
            description=description,
        )
    except MediaPipelineError as e:
        raise to_http_exception(e)

    return UploadResponse(
        message="Video uploaded successfully",
        video=VideoSummary.model_validate(video),
    )


@router.get("", response_model=VideoListResponse)
async def list_videos(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    owner_id: uuid.UUID = Depends(get_current_owner_id),
    db: AsyncSession = Depends(get_db),
    pipeline: MediaPipeline = Depends(get_pipeline),
):
    """List the caller's videos, newest first."""
    result = await VideoService(db, pipeline).list_videos(owner_id, page=page, limit=limit)
    return VideoListResponse(
        videos=[
            VideoResponse.from_model(
                video,
                jobs=result.completed_jobs.get(video.id, []),
                access_log_count=result.access_log_counts.get(video.id, 0),
            )
            for video in result.videos
        ],
        pagination=Pagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )


@router.get("/{video_id}", response_model=VideoDetailResponse)
async def get_video(
    video_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_current_owner_id),
    db: AsyncSession = Depends(get_db),
    pipeline: MediaPipeline = Depends(get_pipeline),
):
    """Get a video with all of its transcode jobs."""
    try:
        video, jobs = await VideoService(db, pipeline).get_video(video_id, owner_id)
    except MediaPipelineError as e:
        raise to_http_exception(e)
    return VideoDetailResponse(video=VideoResponse.from_model(video, jobs=jobs))


@router.get("/{video_id}/url", response_model=SignedUrlResponse)
async def get_signed_url(
    video_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_current_owner_id),
    db: AsyncSession = Depends(get_db),
    pipeline: MediaPipeline = Depends(get_pipeline),
):
    """Time-limited direct URL of the original upload."""
    try:
        url, expires_in = await VideoService(db, pipeline).get_signed_url(video_id, owner_id)
    except MediaPipelineError as e:
        raise to_http_exception(e)
    return SignedUrlResponse(url=url, expires_in=expires_in)


@router.delete("/{video_id}", response_model=MessageResponse)
async def delete_video(
    video_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_current_owner_id),
    db: AsyncSession = Depends(get_db),
    pipeline: MediaPipeline = Depends(get_pipeline),
):
    """Delete a video, its stored objects and its history."""
    try:
        await VideoService(db, pipeline).delete_video(video_id, owner_id)
    except MediaPipelineError as e:
        raise to_http_exception(e)
    return MessageResponse(message="Video deleted successfully")
