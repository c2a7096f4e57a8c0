import asyncio
import logging
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ytscribe.api.deps import get_services
from ytscribe.core.background import spawn
from ytscribe.core.errors import InvalidUrlError, NoValidUrlsError
from ytscribe.services.jobs import PENDING
from ytscribe.services.orchestrator import BatchOutcome, ItemResult, VideoRef
from ytscribe.services.registry import ServiceRegistry
from ytscribe.services.youtube import (
    build_video_url,
    extract_youtube_playlist_id,
    extract_youtube_video_id,
    fetch_playlist_entries,
    is_channel_url,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transcribe", tags=["transcribe"])

Format = Literal["json", "srt", "text"]


class BatchTranscribeRequest(BaseModel):
    urls: list[str] = Field(min_length=1, max_length=1000)
    format: Format = "json"
    wait: bool = True


class TranscribeRequest(BaseModel):
    url: str
    format: Format = "json"


class PlaylistTranscribeRequest(BaseModel):
    url: str
    format: Format = "json"
    max_videos: int | None = Field(default=None, ge=1, le=5000)
    wait: bool = True


class VideoResultOut(BaseModel):
    video_id: str
    video_url: str
    success: bool
    from_cache: bool = False
    video_title: str | None = None
    transcript: list[dict] | None = None
    srt: str | None = None
    text: str | None = None
    error: dict | None = None
    processing_time_ms: int | None = None


class VideoTranscribeResponse(BaseModel):
    ok: bool
    format: str
    result: VideoResultOut


class TranscribeResponse(BaseModel):
    ok: bool
    job_id: str
    status: str
    total_items: int
    format: str

    # set once the job has run (wait=true)
    cache_hits: int | None = None
    urls_to_extract: int | None = None
    successful: int | None = None
    failed: int | None = None
    duration_ms: int | None = None
    results: list[VideoResultOut] | None = None

    # playlist/channel source
    playlist_id: str | None = None
    playlist_title: str | None = None
    rejected_urls: list[str] | None = None


def _render(item: ItemResult, fmt: str) -> VideoResultOut:
    out = VideoResultOut(
        video_id=item.video_id,
        video_url=item.video_url,
        success=item.success,
        from_cache=item.from_cache,
        video_title=item.video_title,
        processing_time_ms=item.processing_time_ms,
    )
    if not item.success:
        out.error = {"code": item.error_code, "message": item.error_message}
    elif fmt == "srt":
        out.srt = item.srt
    elif fmt == "text":
        out.text = item.text
    else:
        out.transcript = [{"time": s.time, "text": s.text} for s in item.transcript]
    return out


def _fill_outcome(resp: TranscribeResponse, outcome: BatchOutcome) -> TranscribeResponse:
    resp.status = outcome.status
    resp.cache_hits = outcome.cache_hits
    resp.urls_to_extract = outcome.urls_to_extract
    resp.successful = outcome.successful
    resp.failed = outcome.failed
    resp.duration_ms = outcome.duration_ms
    resp.results = [_render(r, resp.format) for r in outcome.results]
    return resp


async def _run_job(
    services: ServiceRegistry,
    job_type: str,
    items: list[VideoRef],
    metadata: dict,
    *,
    fmt: str,
    wait: bool,
) -> TranscribeResponse:
    job = services.orchestrator.create_job(job_type, len(items), metadata)
    resp = TranscribeResponse(ok=True, job_id=job.id, status=PENDING, total_items=len(items), format=fmt)

    if not wait:
        spawn(services.orchestrator.process(job.id, items), name=f"job-{job.id}")
        return resp

    outcome = await services.orchestrator.process(job.id, items)
    return _fill_outcome(resp, outcome)


@router.post("/batch", response_model=TranscribeResponse)
async def transcribe_batch(
    req: BatchTranscribeRequest,
    services: ServiceRegistry = Depends(get_services),
) -> TranscribeResponse:
    items: list[VideoRef] = []
    rejected: list[str] = []
    for url in req.urls:
        vid = extract_youtube_video_id(url)
        if not vid:
            logger.warning("Skipping invalid YouTube URL: %s", url)
            rejected.append(url)
            continue
        items.append(VideoRef(video_id=vid, video_url=url.strip()))

    if not items:
        raise NoValidUrlsError(rejected)

    metadata = {"format": req.format, "requested_urls": [i.video_url for i in items]}
    if rejected:
        metadata["rejected_urls"] = rejected

    resp = await _run_job(services, "batch", items, metadata, fmt=req.format, wait=req.wait)
    resp.rejected_urls = rejected or None
    return resp


@router.post("/playlist", response_model=TranscribeResponse)
async def transcribe_playlist(
    req: PlaylistTranscribeRequest,
    services: ServiceRegistry = Depends(get_services),
) -> TranscribeResponse:
    url = req.url.strip()
    if not extract_youtube_playlist_id(url) and not is_channel_url(url):
        raise InvalidUrlError(url, hint="expected a playlist or channel URL")

    max_videos = req.max_videos or services.settings.playlist_max_videos
    meta = await asyncio.to_thread(fetch_playlist_entries, url, max_items=max_videos)

    playlist_id = meta["playlist_id"]
    items = [
        VideoRef(video_id=e["video_id"], video_url=build_video_url(e["video_id"]))
        for e in meta["entries"][:max_videos]
    ]
    metadata = {
        "format": req.format,
        "source_url": url,
        "source": meta.get("source", "playlist"),
        "playlist_id": playlist_id,
        "playlist_title": meta.get("playlist_title"),
        "max_videos": max_videos,
    }

    resp = await _run_job(services, "playlist", items, metadata, fmt=req.format, wait=req.wait)
    resp.playlist_id = playlist_id
    resp.playlist_title = meta.get("playlist_title")
    return resp


@router.post("", response_model=VideoTranscribeResponse)
async def transcribe_video(
    req: TranscribeRequest,
    services: ServiceRegistry = Depends(get_services),
) -> VideoTranscribeResponse:
    url = req.url.strip()
    vid = extract_youtube_video_id(url)
    if not vid:
        raise InvalidUrlError(url)

    logger.info("Transcribing %s (queue=%s)", vid, services.queue.stats().to_dict())
    item = await services.orchestrator.transcribe(VideoRef(video_id=vid, video_url=url))
    return VideoTranscribeResponse(ok=True, format=req.format, result=_render(item, req.format))
