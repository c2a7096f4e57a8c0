import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# .env at the project root (stable, regardless of CWD)
BASE_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=BASE_DIR / ".env", override=False)


EVICTION_POLICIES = ("LRU", "TTL", "NONE")
EXTRACTOR_BACKENDS = ("transcript_api",)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./data/transcripts.db")
    env: str = os.getenv("ENV", "local")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Admission-controlled queue
    queue_max_concurrent: int = int(os.getenv("QUEUE_MAX_CONCURRENT", "3"))
    queue_max_size: int = int(os.getenv("QUEUE_MAX_SIZE", "100"))
    queue_timeout_ms: int = int(os.getenv("QUEUE_TIMEOUT_MS", "60000"))

    # Transcript cache + eviction
    cache_max_entries: int = int(os.getenv("CACHE_MAX_ENTRIES", "10000"))
    cache_max_size_mb: float = float(os.getenv("CACHE_MAX_SIZE_MB", "500"))
    cache_ttl_days: int = int(os.getenv("CACHE_TTL_DAYS", "30"))
    cache_eviction_policy: str = os.getenv("CACHE_EVICTION_POLICY", "LRU").strip().upper()
    cache_eviction_interval_hours: float = float(os.getenv("CACHE_EVICTION_INTERVAL_HOURS", "6"))
    cache_eviction_batch_size: int = int(os.getenv("CACHE_EVICTION_BATCH_SIZE", "100"))

    # Cached failures count as misses (re-extracted) when on
    cache_retry_failed: bool = _env_bool("CACHE_RETRY_FAILED", "1")

    playlist_max_videos: int = int(os.getenv("PLAYLIST_MAX_VIDEOS", "100"))

    # Extractor wiring
    extractor_backend: str = os.getenv("EXTRACTOR_BACKEND", "transcript_api").strip()
    youtube_proxy_url: str | None = os.getenv("YOUTUBE_PROXY_URL")
    youtube_max_retries: int = int(os.getenv("YOUTUBE_MAX_RETRIES", "3"))
    youtube_backoff_sec: float = float(os.getenv("YOUTUBE_BACKOFF_SEC", "1.5"))
    youtube_languages: tuple[str, ...] = field(default_factory=lambda: _env_list("YOUTUBE_LANGUAGES", "en"))

    @property
    def queue_timeout_sec(self) -> float:
        return self.queue_timeout_ms / 1000.0

    def validate(self) -> "Settings":
        if self.cache_eviction_policy not in EVICTION_POLICIES:
            raise ValueError(
                f"CACHE_EVICTION_POLICY must be one of {', '.join(EVICTION_POLICIES)}, "
                f"got {self.cache_eviction_policy!r}"
            )
        if self.extractor_backend not in EXTRACTOR_BACKENDS:
            raise ValueError(f"Unknown EXTRACTOR_BACKEND: {self.extractor_backend!r}")

        positive = {
            "QUEUE_MAX_CONCURRENT": self.queue_max_concurrent,
            "QUEUE_TIMEOUT_MS": self.queue_timeout_ms,
            "CACHE_EVICTION_INTERVAL_HOURS": self.cache_eviction_interval_hours,
            "CACHE_EVICTION_BATCH_SIZE": self.cache_eviction_batch_size,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ValueError(f"{name} must be > 0, got {value}")

        non_negative = {
            "QUEUE_MAX_SIZE": self.queue_max_size,
            "CACHE_MAX_ENTRIES": self.cache_max_entries,
            "CACHE_MAX_SIZE_MB": self.cache_max_size_mb,
            "CACHE_TTL_DAYS": self.cache_ttl_days,
        }
        for name, value in non_negative.items():
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")
        return self


settings = Settings()
