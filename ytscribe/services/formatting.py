from __future__ import annotations

from typing import Iterable, Protocol

# Seconds a final cue stays on screen when there is no next segment
LAST_CUE_SEC = 3


class _Segment(Protocol):
    time: str
    text: str


def seconds_to_timestamp(seconds: float) -> str:
    """
    15.2 -> "0:15", 75 -> "1:15", 3725 -> "1:02:05"
    """
    total = max(0, int(seconds))
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    if h:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


def timestamp_to_seconds(ts: str) -> int:
    """Parse "SS", "M:SS" or "H:MM:SS"; anything unreadable is 0."""
    parts = (ts or "").strip().split(":")
    try:
        nums = [int(float(p)) for p in parts]
    except ValueError:
        return 0
    total = 0
    for n in nums[-3:]:
        total = total * 60 + max(0, n)
    return total


def _srt_clock(seconds: int) -> str:
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    return f"{h:02d}:{m:02d}:{s:02d},000"


def format_srt(segments: Iterable[_Segment]) -> str:
    """
    Render segments as SubRip cues.

    Each cue ends where the next one starts; the last ends LAST_CUE_SEC after its own start.
    """
    items = list(segments)
    cues: list[str] = []
    for i, seg in enumerate(items):
        start = timestamp_to_seconds(seg.time)
        if i + 1 < len(items):
            end = timestamp_to_seconds(items[i + 1].time)
        else:
            end = start + LAST_CUE_SEC
        cues.append(f"{i + 1}\n{_srt_clock(start)} --> {_srt_clock(end)}\n{seg.text}\n")
    return "\n".join(cues)


def format_text(segments: Iterable[_Segment]) -> str:
    return "\n".join(f"{seg.time} {seg.text}" for seg in segments)
