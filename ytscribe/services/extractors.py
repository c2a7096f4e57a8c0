from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from youtube_transcript_api import NoTranscriptFound, TranscriptsDisabled, VideoUnavailable, YouTubeTranscriptApi
from youtube_transcript_api.proxies import GenericProxyConfig

from ytscribe.core.config import Settings
from ytscribe.core.errors import ExtractionFailedError, TranscriptNotFoundError
from ytscribe.services.formatting import seconds_to_timestamp
from ytscribe.services.transcript_cache import TranscriptSegment

logger = logging.getLogger(__name__)

# Failures that retrying cannot fix
_PERMANENT = (TranscriptsDisabled, NoTranscriptFound, VideoUnavailable)


@dataclass
class ExtractedTranscript:
    segments: list[TranscriptSegment] = field(default_factory=list)
    video_title: str | None = None


@runtime_checkable
class Extractor(Protocol):
    """Given a video, produce its transcript or raise ExtractionFailedError / TranscriptNotFoundError."""

    async def extract(self, video_id: str, video_url: str) -> ExtractedTranscript: ...


def _snippets_to_segments(snippets: Any) -> list[TranscriptSegment]:
    segments: list[TranscriptSegment] = []
    for snip in snippets:
        text = " ".join((getattr(snip, "text", "") or "").split())
        if not text:
            continue
        segments.append(TranscriptSegment(time=seconds_to_timestamp(float(getattr(snip, "start", 0.0) or 0.0)), text=text))
    return segments


class TranscriptApiExtractor:
    """Caption fetcher on youtube-transcript-api, retried with linear backoff."""

    def __init__(
        self,
        *,
        languages: tuple[str, ...] = ("en",),
        proxy_url: str | None = None,
        max_retries: int = 3,
        backoff_sec: float = 1.5,
        api: Any | None = None,
    ):
        self.languages = tuple(languages) or ("en",)
        self.max_retries = max(1, max_retries)
        self.backoff_sec = max(0.0, backoff_sec)
        if api is None:
            proxy_config = GenericProxyConfig(http_url=proxy_url, https_url=proxy_url) if proxy_url else None
            api = YouTubeTranscriptApi(proxy_config=proxy_config)
        self._api = api

    @classmethod
    def from_settings(cls, settings: Settings) -> "TranscriptApiExtractor":
        return cls(
            languages=settings.youtube_languages,
            proxy_url=settings.youtube_proxy_url,
            max_retries=settings.youtube_max_retries,
            backoff_sec=settings.youtube_backoff_sec,
        )

    def _fetch(self, video_id: str) -> list[TranscriptSegment]:
        fetched = self._api.fetch(video_id, languages=list(self.languages))
        return _snippets_to_segments(fetched)

    async def extract(self, video_id: str, video_url: str) -> ExtractedTranscript:
        last_err: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                segments = await asyncio.to_thread(self._fetch, video_id)
            except _PERMANENT as e:
                raise TranscriptNotFoundError(video_url, reason=f"No transcript available ({type(e).__name__})") from e
            except Exception as e:
                last_err = e
                logger.warning("Transcript fetch failed for %s (attempt %s/%s): %s", video_id, attempt, self.max_retries, e)
                if attempt < self.max_retries:
                    await asyncio.sleep(self.backoff_sec * attempt)
                continue

            if not segments:
                raise TranscriptNotFoundError(video_url, reason="Transcript empty after fetch")
            return ExtractedTranscript(segments=segments)

        raise ExtractionFailedError(
            str(last_err) if last_err else "Transcript fetch failed",
            video_url,
            attempt=self.max_retries,
        ) from last_err


def build_extractor(settings: Settings) -> Extractor:
    backend = (settings.extractor_backend or "").strip()
    if backend == "transcript_api":
        return TranscriptApiExtractor.from_settings(settings)
    raise ValueError(f"Unknown extractor backend: {backend!r}")
