import json
import subprocess

import pytest

from ytscribe.core.errors import PlaylistEnumerationError
from ytscribe.services import youtube
from ytscribe.services.youtube import (
    build_video_url,
    extract_youtube_playlist_id,
    extract_youtube_video_id,
    fetch_playlist_entries,
    is_channel_url,
)


@pytest.mark.parametrize(
    "url",
    [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://m.youtube.com/watch?v=dQw4w9WgXcQ&t=42",
        "https://youtu.be/dQw4w9WgXcQ",
        "https://www.youtube.com/shorts/dQw4w9WgXcQ",
        "https://www.youtube.com/embed/dQw4w9WgXcQ",
        "http://youtube.com/v/dQw4w9WgXcQ",
    ],
)
def test_extract_video_id(url):
    assert extract_youtube_video_id(url) == "dQw4w9WgXcQ"


@pytest.mark.parametrize(
    "url",
    [
        "",
        "not a url",
        "dQw4w9WgXcQ",
        "ftp://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://vimeo.com/watch?v=dQw4w9WgXcQ",
        "https://www.youtube.com/watch?v=short",
        "https://www.youtube.com/playlist?list=PL1234567890",
    ],
)
def test_extract_video_id_rejects(url):
    assert extract_youtube_video_id(url) is None


def test_extract_playlist_id():
    assert extract_youtube_playlist_id("https://www.youtube.com/playlist?list=PLabcdefghij") == "PLabcdefghij"
    assert extract_youtube_playlist_id("https://youtu.be/dQw4w9WgXcQ?list=PLabcdefghij") == "PLabcdefghij"
    assert extract_youtube_playlist_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ") is None
    assert extract_youtube_playlist_id("https://example.com/playlist?list=PLabcdefghij") is None


def test_is_channel_url():
    assert is_channel_url("https://www.youtube.com/@somecreator")
    assert is_channel_url("https://www.youtube.com/@somecreator/videos")
    assert is_channel_url("https://www.youtube.com/channel/UC" + "a" * 22)
    assert is_channel_url("https://www.youtube.com/c/SomeName")
    assert is_channel_url("https://www.youtube.com/user/someone")
    assert not is_channel_url("https://www.youtube.com/channel/nope")
    assert not is_channel_url("https://www.youtube.com/watch?v=dQw4w9WgXcQ")
    assert not is_channel_url("https://www.youtube.com/@")


def test_build_video_url():
    assert build_video_url("dQw4w9WgXcQ") == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
    assert (
        build_video_url("dQw4w9WgXcQ", playlist_id="PLabcdefghij", playlist_index=3)
        == "https://www.youtube.com/watch?v=dQw4w9WgXcQ&list=PLabcdefghij&index=3"
    )


def _fake_run(payload, seen):
    def run(cmd, **kwargs):
        seen.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(payload), stderr="")

    return run


def test_fetch_playlist_entries(monkeypatch):
    seen = []
    payload = {
        "id": "PLabcdefghij",
        "title": "My playlist",
        "entries": [
            {"id": "aaaaaaaaaaa", "title": "One"},
            {"id": "bad"},
            None,
            {"id": "bbbbbbbbbbb", "title": None},
            {"id": "ccccccccccc", "title": "Three"},
        ],
    }
    monkeypatch.setattr(youtube.subprocess, "run", _fake_run(payload, seen))

    out = fetch_playlist_entries("https://www.youtube.com/playlist?list=PLabcdefghij", max_items=2)

    assert out["source"] == "playlist"
    assert out["playlist_id"] == "PLabcdefghij"
    assert out["playlist_title"] == "My playlist"
    assert out["entries"] == [
        {"video_id": "aaaaaaaaaaa", "title": "One", "index": 1},
        {"video_id": "bbbbbbbbbbb", "title": None, "index": 2},
    ]
    assert seen[0][:2] == ["yt-dlp", "--flat-playlist"]
    assert "--playlist-end" in seen[0]
    assert seen[0][-1] == "https://www.youtube.com/playlist?list=PLabcdefghij"


def test_fetch_channel_lists_uploads_tab(monkeypatch):
    seen = []
    payload = {"id": "UC" + "a" * 22, "title": "Creator", "entries": [{"id": "aaaaaaaaaaa"}]}
    monkeypatch.setattr(youtube.subprocess, "run", _fake_run(payload, seen))

    out = fetch_playlist_entries("https://www.youtube.com/@creator")

    assert out["source"] == "channel"
    assert seen[0][-1] == "https://www.youtube.com/@creator/videos"


def test_fetch_playlist_entries_failures(monkeypatch):
    def missing(cmd, **kwargs):
        raise FileNotFoundError("yt-dlp")

    monkeypatch.setattr(youtube.subprocess, "run", missing)
    with pytest.raises(PlaylistEnumerationError, match="yt-dlp not found"):
        fetch_playlist_entries("https://www.youtube.com/playlist?list=PLabcdefghij")

    def failed(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd, stderr="ERROR: playlist does not exist")

    monkeypatch.setattr(youtube.subprocess, "run", failed)
    with pytest.raises(PlaylistEnumerationError, match="playlist does not exist") as exc:
        fetch_playlist_entries("https://www.youtube.com/playlist?list=PLabcdefghij")
    assert exc.value.code == "PLAYLIST_EXTRACTION_FAILED"

    monkeypatch.setattr(youtube.subprocess, "run", _fake_run({"id": "PLabcdefghij", "entries": []}, []))
    with pytest.raises(PlaylistEnumerationError, match="no usable video entries"):
        fetch_playlist_entries("https://www.youtube.com/playlist?list=PLabcdefghij")
