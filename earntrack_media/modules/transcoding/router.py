"""Transcoding API router.

Transcode requests, job status and HLS streaming endpoints. The stream
endpoints are public so players can fetch them without a token.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from earntrack_media.core.database import get_db
from earntrack_media.core.exceptions import MediaPipelineError, to_http_exception
from earntrack_media.core.security import get_current_owner_id
from earntrack_media.modules.transcoding.hls import HLS_PLAYLIST_CONTENT_TYPE
from earntrack_media.modules.transcoding.models import TranscodeStatus
from earntrack_media.modules.transcoding.schemas import (
    StreamPlaylistResponse,
    StreamResponse,
    TranscodeJobResponse,
    TranscodeRequest,
    TranscodeRequestResponse,
    TranscodeStatusResponse,
    VariantPlaylistResponse,
)
from earntrack_media.modules.transcoding.service import TranscodingService
from earntrack_media.pipeline import MediaPipeline, get_pipeline

router = APIRouter(prefix="/videos", tags=["transcoding"])


@router.get("/{video_id}/transcode-status", response_model=TranscodeStatusResponse)
async def get_transcode_status(
    video_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_current_owner_id),
    db: AsyncSession = Depends(get_db),
    pipeline: MediaPipeline = Depends(get_pipeline),
):
    """Per-status job counts and the aggregate video status."""
    try:
        breakdown = await TranscodingService(db, pipeline).get_status_breakdown(video_id, owner_id)
    except MediaPipelineError as e:
        raise to_http_exception(e)

    counts = breakdown.counts
    return TranscodeStatusResponse(
        video_id=breakdown.video.id,
        video_status=breakdown.video.status,
        transcode_jobs=[TranscodeJobResponse.model_validate(job) for job in breakdown.jobs],
        total_jobs=len(breakdown.jobs),
        completed_jobs=counts[TranscodeStatus.COMPLETED],
        failed_jobs=counts[TranscodeStatus.FAILED],
        pending_jobs=counts[TranscodeStatus.PENDING],
        processing_jobs=counts[TranscodeStatus.PROCESSING],
    )


@router.post("/{video_id}/transcode", response_model=TranscodeRequestResponse)
async def request_transcode(
    video_id: uuid.UUID,
    request: Optional[TranscodeRequest] = Body(None),
    owner_id: uuid.UUID = Depends(get_current_owner_id),
    db: AsyncSession = Depends(get_db),
    pipeline: MediaPipeline = Depends(get_pipeline),
):
    """Create one transcode job per (format, resolution) and enqueue them."""
    request = request or TranscodeRequest()
    try:
        jobs = await TranscodingService(db, pipeline).request_transcode(
            video_id,
            owner_id,
            formats=request.formats,
            resolutions=request.resolutions,
        )
    except MediaPipelineError as e:
        raise to_http_exception(e)

    return TranscodeRequestResponse(
        message="Transcoding jobs queued",
        video_id=video_id,
        job_ids=[job.id for job in jobs],
    )


@router.get("/{video_id}/stream", response_model=StreamResponse)
async def get_stream(
    video_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    pipeline: MediaPipeline = Depends(get_pipeline),
):
    """Master playlist URL and the variant playlists that are ready."""
    try:
        variants = await TranscodingService(db, pipeline).get_hls_variants(video_id)
    except MediaPipelineError as e:
        raise to_http_exception(e)

    return StreamResponse(
        message="HLS stream available",
        playlist=StreamPlaylistResponse(
            master_playlist_url=pipeline.master_playlist_url(video_id),
            variant_playlists=[
                VariantPlaylistResponse(
                    resolution=variant.resolution,
                    bandwidth=variant.bandwidth,
                    url=variant.uri,
                )
                for variant in variants
            ],
        ),
    )


@router.get("/{video_id}/stream/master.m3u8", response_class=PlainTextResponse)
async def get_master_playlist(
    video_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    pipeline: MediaPipeline = Depends(get_pipeline),
):
    """Master playlist rendered from the completed HLS variants."""
    try:
        playlist = await TranscodingService(db, pipeline).render_master_playlist(video_id)
    except MediaPipelineError as e:
        raise to_http_exception(e)
    return PlainTextResponse(playlist, media_type=HLS_PLAYLIST_CONTENT_TYPE)
