import json
import logging
import re
import subprocess
from urllib.parse import parse_qs, urlparse

from ytscribe.core.errors import PlaylistEnumerationError

logger = logging.getLogger(__name__)

_YT_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{11}$")
_PL_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{10,256}$")
_CHANNEL_ID_RE = re.compile(r"^UC[a-zA-Z0-9_-]{22}$")

_YT_HOSTS = ("youtube.com", "www.youtube.com", "m.youtube.com", "music.youtube.com")


def _parse(url: str):
    try:
        u = urlparse((url or "").strip())
    except ValueError:
        return None
    if u.scheme not in ("http", "https"):
        return None
    return u


def extract_youtube_video_id(url: str) -> str | None:
    """
    Supports:
    - https://www.youtube.com/watch?v=VIDEOID
    - https://youtu.be/VIDEOID
    - https://www.youtube.com/shorts/VIDEOID
    - https://www.youtube.com/embed/VIDEOID
    - https://www.youtube.com/v/VIDEOID (legacy)
    """
    u = _parse(url)
    if u is None:
        return None

    host = (u.hostname or "").lower()
    path = (u.path or "").strip("/")

    # youtu.be/VIDEOID
    if host == "youtu.be":
        vid = path.split("/")[0] if path else ""
        return vid if _YT_ID_RE.match(vid) else None

    if host not in _YT_HOSTS:
        return None

    # youtube.com/watch?v=VIDEOID
    if path == "watch":
        q = parse_qs(u.query or "")
        vid = (q.get("v", [""])[0]).strip()
        return vid if _YT_ID_RE.match(vid) else None

    # youtube.com/{shorts,embed,v}/VIDEOID
    parts = path.split("/")
    if len(parts) >= 2 and parts[0] in ("shorts", "embed", "v"):
        vid = parts[1]
        return vid if _YT_ID_RE.match(vid) else None

    return None


def extract_youtube_playlist_id(url: str) -> str | None:
    """
    Supports:
    - https://www.youtube.com/playlist?list=PLAYLISTID
    - https://www.youtube.com/watch?v=VIDEOID&list=PLAYLISTID
    - https://youtu.be/VIDEOID?list=PLAYLISTID
    """
    u = _parse(url)
    if u is None:
        return None

    host = (u.hostname or "").lower()
    if host != "youtu.be" and host not in _YT_HOSTS:
        return None

    q = parse_qs(u.query or "")
    pl = (q.get("list", [""])[0]).strip()
    return pl if pl and _PL_ID_RE.match(pl) else None


def is_channel_url(url: str) -> bool:
    """
    - https://www.youtube.com/@handle[/videos]
    - https://www.youtube.com/channel/UCxxxx
    - https://www.youtube.com/c/Name
    - https://www.youtube.com/user/Name
    """
    u = _parse(url)
    if u is None or (u.hostname or "").lower() not in _YT_HOSTS:
        return False

    parts = [p for p in (u.path or "").split("/") if p]
    if not parts:
        return False
    if parts[0].startswith("@") and len(parts[0]) > 1:
        return True
    if parts[0] == "channel" and len(parts) > 1:
        return bool(_CHANNEL_ID_RE.match(parts[1]))
    return parts[0] in ("c", "user") and len(parts) > 1


def _channel_videos_url(url: str) -> str:
    # yt-dlp lists uploads from the /videos tab; the bare channel page yields tabs instead
    u = urlparse(url)
    parts = [p for p in (u.path or "").split("/") if p]
    if parts and parts[-1] in ("videos", "shorts", "streams"):
        return url
    base = f"{u.scheme}://{u.netloc}/{'/'.join(parts)}"
    return base.rstrip("/") + "/videos"


def fetch_playlist_entries(url: str, *, max_items: int = 100, timeout_sec: int = 120) -> dict:
    """
    Uses yt-dlp (must be installed) to enumerate a playlist or channel.

    Returns:
      {
        "source": "playlist" | "channel",
        "playlist_id": str,
        "playlist_title": str|None,
        "entries": [{"video_id": str, "title": str|None, "index": int}]
      }
    """
    source = "channel" if is_channel_url(url) else "playlist"
    target = _channel_videos_url(url) if source == "channel" else url

    # --flat-playlist keeps it fast (no per-video deep fetch)
    cmd = [
        "yt-dlp",
        "--flat-playlist",
        "--dump-single-json",
        "--no-warnings",
        "--ignore-errors",
    ]
    if max_items:
        cmd.extend(["--playlist-end", str(max_items)])
    cmd.append(target)

    try:
        p = subprocess.run(cmd, check=True, capture_output=True, text=True, timeout=timeout_sec)
    except FileNotFoundError:
        raise PlaylistEnumerationError("yt-dlp not found. Install it and ensure it is on PATH.")
    except subprocess.TimeoutExpired:
        raise PlaylistEnumerationError(f"yt-dlp timed out while listing {source} entries.")
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        raise PlaylistEnumerationError(f"yt-dlp failed: {stderr or 'unknown error'}")

    raw = (p.stdout or "").strip()
    if not raw:
        raise PlaylistEnumerationError(f"yt-dlp returned empty output for {source} metadata.")

    try:
        data = json.loads(raw)
    except ValueError:
        raise PlaylistEnumerationError(f"Could not parse yt-dlp JSON output for {source} metadata.")

    playlist_id = (data.get("id") or "").strip() or (extract_youtube_playlist_id(url) or "")
    if not playlist_id:
        raise PlaylistEnumerationError("Could not resolve playlist id from yt-dlp output or URL.")

    entries = []
    idx = 0
    for e in data.get("entries") or []:
        if not isinstance(e, dict):
            continue
        vid = (e.get("id") or "").strip()
        if not vid or not _YT_ID_RE.match(vid):
            continue
        idx += 1
        entries.append({"video_id": vid, "title": (e.get("title") or None), "index": idx})
        if max_items and len(entries) >= max_items:
            break

    if not entries:
        raise PlaylistEnumerationError(f"The {source} has no usable video entries.")

    logger.info("Enumerated %s entries from %s %s", len(entries), source, playlist_id)
    return {
        "source": source,
        "playlist_id": playlist_id,
        "playlist_title": data.get("title") or None,
        "entries": entries,
    }


def build_video_url(video_id: str, *, playlist_id: str | None = None, playlist_index: int | None = None) -> str:
    base = f"https://www.youtube.com/watch?v={video_id}"
    if playlist_id:
        base += f"&list={playlist_id}"
    if playlist_index is not None:
        base += f"&index={playlist_index}"
    return base
