from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import discord
import yt_dlp

from .errors import UpstreamError
from .throttle import RequestThrottle

log = logging.getLogger(__name__)

DEFAULT_VOLUME = 0.5

YTDL_OPTIONS = {
    "noplaylist": True,
    "nocheckcertificate": True,
    "ignoreerrors": False,
    "quiet": True,
    "no_warnings": True,
    "source_address": "0.0.0.0",
}

FFMPEG_OPTIONS = {
    "before_options": (
        "-reconnect 1 -reconnect_streamed 1 -reconnect_on_network_error 1"
        " -reconnect_on_http_error 5xx -reconnect_delay_max 5"
    ),
    "options": "-vn -ar 48000 -bufsize 64k",
}


@dataclass(frozen=True)
class PlayableItem:
    """One resolved track. Replaced, never mutated, when an alternative is used."""

    title: str
    author: str
    url: str
    thumbnail: str = ""
    duration: int = 0  # seconds
    requester: str = ""


@dataclass(frozen=True)
class QualitySnapshot:
    """Format metadata of the stream that is actually playing. ``None`` means unknown."""

    bitrate: int | None = None  # kbps
    codec: str | None = None
    container: str | None = None

    @classmethod
    def from_format(cls, fmt: dict) -> QualitySnapshot:
        abr = fmt.get("abr") or fmt.get("tbr")
        codec = fmt.get("acodec")
        return cls(
            bitrate=round(abr) if abr else None,
            codec=codec if codec and codec != "none" else None,
            container=format_container(fmt) or None,
        )


@dataclass(frozen=True)
class SearchCandidate:
    title: str
    channel: str
    url: str
    thumbnail: str = ""
    duration: int = 0
    is_live: bool = False

    @classmethod
    def from_entry(cls, entry: dict) -> SearchCandidate:
        url = entry.get("webpage_url") or entry.get("url") or ""
        if url and not url.startswith("http"):
            url = f"https://www.youtube.com/watch?v={url}"
        return cls(
            title=entry.get("title") or "Unknown",
            channel=entry.get("channel") or entry.get("uploader") or "Unknown",
            url=url,
            thumbnail=_thumbnail(entry),
            duration=int(entry.get("duration") or 0),
            is_live=is_live_info(entry),
        )

    def to_item(self, requester: str = "") -> PlayableItem:
        return PlayableItem(
            title=self.title,
            author=self.channel,
            url=self.url,
            thumbnail=self.thumbnail,
            duration=self.duration,
            requester=requester,
        )


def _thumbnail(data: dict) -> str:
    if data.get("thumbnail"):
        return data["thumbnail"]
    thumbs = data.get("thumbnails") or []
    return thumbs[-1].get("url", "") if thumbs else ""


def is_live_info(data: dict) -> bool:
    return bool(data.get("is_live")) or data.get("live_status") in ("is_live", "is_upcoming")


def item_from_info(data: dict, url: str, requester: str = "") -> PlayableItem:
    return PlayableItem(
        title=data.get("title") or "Unknown",
        author=data.get("channel") or data.get("uploader") or "Unknown",
        url=data.get("webpage_url") or url,
        thumbnail=_thumbnail(data),
        duration=int(data.get("duration") or 0),
        requester=requester,
    )


def format_container(fmt: dict) -> str:
    """Container family of a yt-dlp format: ``webm``, ``mp4``, ``opus``..."""
    container = (fmt.get("container") or fmt.get("ext") or "").lower()
    container = container.removesuffix("_dash")
    if container == "m4a":
        return "mp4"
    return container


def is_audio_only(fmt: dict) -> bool:
    return fmt.get("acodec") not in (None, "none") and fmt.get("vcodec") == "none"


class AudioStream(discord.PCMVolumeTransformer):
    """Wraps FFmpegPCMAudio with volume control and the item it decodes."""

    def __init__(
        self,
        source: discord.AudioSource,
        *,
        item: PlayableItem,
        volume: float = DEFAULT_VOLUME,
        stream_url: str = "",
    ) -> None:
        super().__init__(source, volume)
        self.item = item
        self.stream_url = stream_url

    @classmethod
    def from_stream_url(
        cls,
        stream_url: str,
        *,
        item: PlayableItem,
        volume: float = DEFAULT_VOLUME,
    ) -> AudioStream:
        source = discord.FFmpegPCMAudio(
            stream_url,
            before_options=FFMPEG_OPTIONS["before_options"],
            options=FFMPEG_OPTIONS["options"],
        )
        return cls(source, item=item, volume=volume, stream_url=stream_url)


class YouTubeClient:
    """Search, metadata and format enumeration over yt-dlp.

    Every request goes through the shared :class:`RequestThrottle`.
    yt-dlp failures surface as :class:`UpstreamError`.
    """

    def __init__(self, throttle: RequestThrottle, *, cookiefile: str | None = None) -> None:
        self._throttle = throttle
        self._cookiefile = cookiefile if cookiefile is not None else os.getenv("YTDL_COOKIEFILE")

    def _options(self, **overrides) -> dict:
        opts = {**YTDL_OPTIONS, **overrides}
        if self._cookiefile:
            opts["cookiefile"] = self._cookiefile
        return opts

    async def _extract(self, query: str, *, process: bool = True, **overrides) -> dict:
        ytdl = yt_dlp.YoutubeDL(self._options(**overrides))
        try:
            data = await self._throttle.call(
                ytdl.extract_info, query, download=False, process=process
            )
        except yt_dlp.utils.YoutubeDLError as exc:
            raise UpstreamError(str(exc)) from exc
        if data is None:
            raise UpstreamError(f"no data returned for {query!r}")
        return data

    async def search(self, text: str, limit: int) -> list[SearchCandidate]:
        """Return up to ``limit`` candidates in the order the search service ranks them."""
        data = await self._extract(f"ytsearch{limit}:{text}", extract_flat="in_playlist")
        results: list[SearchCandidate] = []
        for entry in data.get("entries") or []:
            if entry is None:
                continue
            results.append(SearchCandidate.from_entry(entry))
            if len(results) >= limit:
                break
        return results

    async def video_info(self, url: str) -> dict:
        """Full metadata for one video, including its format list."""
        return await self._extract(url)

    async def basic_info(self, url: str) -> dict:
        """Unprocessed metadata; cheaper and still carries the title when formats fail."""
        return await self._extract(url, process=False)

    async def stream_info(self, url: str, selector: str) -> dict:
        """Metadata with a single format picked by a yt-dlp format selector."""
        data = await self._extract(url, format=selector)
        if "entries" in data:
            data = data["entries"][0]
        return data
