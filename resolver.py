"""Audio source lookup backed by yt-dlp.

Searching and resolving a source id to a playable URL both block for
seconds, so the async wrappers run them in the default thread executor.
"""
import asyncio
from dataclasses import dataclass
from typing import List, Optional

import yt_dlp

from constants import SEARCH_RESULT_LIMIT
from logging_config import get_logger

logger = get_logger(__name__)

SEARCH_OPTS = {
    'quiet': True,
    'no_warnings': True,
    'extract_flat': True,
    'skip_download': True,
    'ignoreerrors': True,
}

RESOLVE_OPTS = {
    'format': 'bestaudio[ext=m4a]/bestaudio/best',
    'noplaylist': True,
    'quiet': True,
    'no_warnings': True,
    'skip_download': True,
}

# Substrings of yt-dlp errors that will not go away by retrying
FATAL_MARKERS = (
    "private video",
    "video unavailable",
    "has been removed",
    "account associated with this video has been terminated",
    "confirm your age",
    "age-restricted",
    "not available in your country",
)


class ResolutionError(Exception):
    """Lookup failed for a reason that may succeed on retry."""


class SourceUnavailableError(ResolutionError):
    """The source is gone or restricted; retrying will not help."""


@dataclass
class SearchResult:
    id: str
    title: str
    thumbnail: Optional[str]
    channel: Optional[str]
    duration: Optional[str]


def format_duration(seconds) -> str:
    seconds = int(seconds or 0)
    return f"{seconds // 60}:{seconds % 60:02d}"


def classify_error(error: Exception) -> ResolutionError:
    message = str(error).lower()
    if any(marker in message for marker in FATAL_MARKERS):
        return SourceUnavailableError(str(error))
    return ResolutionError(str(error))


class AudioResolver:
    def __init__(self, search_limit: int = SEARCH_RESULT_LIMIT):
        self.search_limit = search_limit

    def search(self, text: str) -> List[SearchResult]:
        try:
            with yt_dlp.YoutubeDL(SEARCH_OPTS) as ydl:
                info = ydl.extract_info(f"ytsearch{self.search_limit}:{text}", download=False)
        except yt_dlp.utils.DownloadError as e:
            raise classify_error(e) from e

        results = []
        for entry in (info or {}).get('entries') or []:
            if not entry or not entry.get('id'):
                continue
            thumbnails = entry.get('thumbnails') or []
            thumbnail = entry.get('thumbnail') or (thumbnails[0].get('url') if thumbnails else None)
            results.append(SearchResult(
                id=entry['id'],
                title=entry.get('title') or 'Unknown Title',
                thumbnail=thumbnail,
                channel=entry.get('channel') or entry.get('uploader') or 'Unknown Channel',
                duration=format_duration(entry.get('duration')),
            ))
        logger.debug(f"Search '{text}' returned {len(results)} results")
        return results

    def resolve(self, source_id: str) -> str:
        """Return a playable audio URL for ``source_id``."""
        try:
            with yt_dlp.YoutubeDL(RESOLVE_OPTS) as ydl:
                info = ydl.extract_info(f"https://www.youtube.com/watch?v={source_id}", download=False)
        except yt_dlp.utils.DownloadError as e:
            raise classify_error(e) from e

        if not info:
            raise SourceUnavailableError(f"No info for {source_id}")
        if info.get('url'):
            return info['url']

        audio_formats = [f for f in info.get('formats') or []
                         if f.get('url') and f.get('acodec') != 'none' and f.get('vcodec') == 'none']
        audio_formats.sort(key=lambda f: f.get('abr') or 0, reverse=True)
        if not audio_formats:
            raise SourceUnavailableError(f"No audio stream found for {source_id}")
        return audio_formats[0]['url']

    async def search_async(self, text: str) -> List[SearchResult]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.search, text)

    async def resolve_async(self, source_id: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.resolve, source_id)


audio_resolver = AudioResolver()
