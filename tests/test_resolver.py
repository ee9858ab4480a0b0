import pytest
import yt_dlp

import resolver
from resolver import (
    AudioResolver,
    ResolutionError,
    SourceUnavailableError,
    classify_error,
    format_duration,
)


class FakeYoutubeDL:
    """Stands in for ``yt_dlp.YoutubeDL``; returns or raises a preset outcome."""

    outcome = None

    def __init__(self, opts):
        self.opts = opts

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def extract_info(self, url, download=False):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


@pytest.fixture()
def fake_ydl(monkeypatch):
    monkeypatch.setattr(resolver.yt_dlp, "YoutubeDL", FakeYoutubeDL)
    yield FakeYoutubeDL
    FakeYoutubeDL.outcome = None


@pytest.mark.parametrize("message", [
    "ERROR: [youtube] abc: Private video. Sign in if you've been granted access",
    "ERROR: [youtube] abc: Video unavailable",
    "ERROR: [youtube] abc: Sign in to confirm your age",
])
def test_fatal_errors_are_classified(message):
    assert isinstance(classify_error(Exception(message)), SourceUnavailableError)


def test_other_errors_are_retryable():
    error = classify_error(Exception("HTTP Error 503: Service Unavailable"))
    assert isinstance(error, ResolutionError)
    assert not isinstance(error, SourceUnavailableError)


def test_format_duration():
    assert format_duration(185) == "3:05"
    assert format_duration(None) == "0:00"


def test_search_maps_entries(fake_ydl):
    fake_ydl.outcome = {"entries": [
        {"id": "a1", "title": "First", "duration": 61, "channel": "Chan",
         "thumbnails": [{"url": "http://img/a1.jpg"}]},
        None,
        {"id": "b2", "uploader": "Uploader"},
    ]}

    results = AudioResolver(search_limit=5).search("query")

    assert [r.id for r in results] == ["a1", "b2"]
    assert results[0].thumbnail == "http://img/a1.jpg"
    assert results[0].duration == "1:01"
    assert results[1].title == "Unknown Title"
    assert results[1].channel == "Uploader"


def test_search_with_no_info_returns_empty(fake_ydl):
    fake_ydl.outcome = None
    assert AudioResolver().search("query") == []


def test_resolve_prefers_direct_url(fake_ydl):
    fake_ydl.outcome = {"url": "https://cdn/direct"}
    assert AudioResolver().resolve("a1") == "https://cdn/direct"


def test_resolve_picks_best_audio_only_format(fake_ydl):
    fake_ydl.outcome = {"formats": [
        {"url": "https://cdn/video", "acodec": "mp4a", "vcodec": "avc1", "abr": 256},
        {"url": "https://cdn/low", "acodec": "opus", "vcodec": "none", "abr": 64},
        {"url": "https://cdn/high", "acodec": "opus", "vcodec": "none", "abr": 160},
    ]}
    assert AudioResolver().resolve("a1") == "https://cdn/high"


def test_resolve_without_audio_is_unavailable(fake_ydl):
    fake_ydl.outcome = {"formats": [{"url": "https://cdn/video", "acodec": "none", "vcodec": "avc1"}]}
    with pytest.raises(SourceUnavailableError):
        AudioResolver().resolve("a1")


def test_resolve_wraps_download_errors(fake_ydl):
    fake_ydl.outcome = yt_dlp.utils.DownloadError("ERROR: Video unavailable")
    with pytest.raises(SourceUnavailableError):
        AudioResolver().resolve("a1")


@pytest.mark.asyncio
async def test_async_wrappers_run_in_executor(fake_ydl):
    fake_ydl.outcome = {"url": "https://cdn/direct"}
    assert await AudioResolver().resolve_async("a1") == "https://cdn/direct"
