"""Tiered format selection for opening an item's audio stream.

The policy is an ordered list of strategies. A strategy is any awaitable
callable ``(item) -> StreamResult`` that raises on failure; the opener
tries them in order and gives up with :class:`UnplayableItem`.

Default tiers:

1. ``primary`` - enumerate formats and pick the first audio-only one by
   container priority (opus, mp4, webm), else any audio-only format.
2. ``fallback`` - let yt-dlp pick the lowest-quality audio.
3. ``alternative`` - search for other uploads of the same track and open
   the first one that works with the fallback tier.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

import discord

from . import metrics
from .audio_source import (
    AudioStream,
    PlayableItem,
    QualitySnapshot,
    YouTubeClient,
    format_container,
    is_audio_only,
)
from .errors import UnplayableItem
from .url_parser import normalize_video_url

log = logging.getLogger(__name__)

FORMAT_PRIORITY = ("opus", "mp4", "webm")
LOWEST_AUDIO = "worstaudio/worst"
ALTERNATIVE_LIMIT = 5

_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9\s]")


class StreamFailure(Exception):
    """One tier could not produce a stream."""


@dataclass
class StreamResult:
    source: discord.AudioSource
    item: PlayableItem
    tier: str
    quality: Optional[QualitySnapshot] = None


StreamStrategy = Callable[[PlayableItem], Awaitable[StreamResult]]


def pick_audio_format(formats: list[dict]) -> dict | None:
    audio = [f for f in formats if is_audio_only(f)]
    for container in FORMAT_PRIORITY:
        for fmt in audio:
            if format_container(fmt) == container and fmt.get("url"):
                return fmt
    for fmt in audio:
        if fmt.get("url"):
            return fmt
    return None


def alternative_query(item: PlayableItem) -> str:
    return " ".join(_UNSAFE_CHARS_RE.sub("", f"{item.title} {item.author}").split())


def _same_locator(a: str, b: str) -> bool:
    return (normalize_video_url(a) or a) == (normalize_video_url(b) or b)


class FormatSelection:
    tier = "primary"

    def __init__(self, youtube: YouTubeClient) -> None:
        self.youtube = youtube

    async def __call__(self, item: PlayableItem) -> StreamResult:
        info = await self.youtube.video_info(item.url)
        formats = info.get("formats") or []
        fmt = pick_audio_format(formats)
        if fmt is None:
            raise StreamFailure(f"no playable audio-only format among {len(formats)}")
        log.debug("Using %s format %s for %s", format_container(fmt), fmt.get("format_id"), item.title)
        source = AudioStream.from_stream_url(fmt["url"], item=item)
        return StreamResult(source, item, self.tier, QualitySnapshot.from_format(fmt))


class LowestQualityAudio:
    tier = "fallback"

    def __init__(self, youtube: YouTubeClient) -> None:
        self.youtube = youtube

    async def __call__(self, item: PlayableItem) -> StreamResult:
        info = await self.youtube.stream_info(item.url, LOWEST_AUDIO)
        stream_url = info.get("url")
        if not stream_url:
            raise StreamFailure("no stream url for lowest-quality audio")
        source = AudioStream.from_stream_url(stream_url, item=item)
        return StreamResult(source, item, self.tier, QualitySnapshot.from_format(info))


class AlternativeSearch:
    tier = "alternative"

    def __init__(
        self,
        youtube: YouTubeClient,
        opener: StreamStrategy,
        limit: int = ALTERNATIVE_LIMIT,
    ) -> None:
        self.youtube = youtube
        self.opener = opener
        self.limit = limit

    async def __call__(self, item: PlayableItem) -> StreamResult:
        query = alternative_query(item)
        if not query:
            raise StreamFailure("nothing left to search for after sanitizing")
        log.info("Searching for alternative: %s", query)
        candidates = await self.youtube.search(query, self.limit)
        for i, candidate in enumerate(candidates, start=1):
            if not candidate.url or _same_locator(candidate.url, item.url):
                continue
            alternative = candidate.to_item(item.requester)
            try:
                result = await self.opener(alternative)
            except Exception as exc:
                log.info("Alternative %d (%s) failed: %s", i, candidate.title, exc)
                continue
            return StreamResult(result.source, alternative, self.tier, result.quality)
        raise StreamFailure(f"all {len(candidates)} alternatives failed")


class StreamOpener:
    def __init__(self, strategies: Sequence[StreamStrategy]) -> None:
        self.strategies = list(strategies)

    @classmethod
    def default(cls, youtube: YouTubeClient) -> StreamOpener:
        lowest = LowestQualityAudio(youtube)
        return cls([FormatSelection(youtube), lowest, AlternativeSearch(youtube, lowest)])

    async def open(self, item: PlayableItem) -> StreamResult:
        for strategy in self.strategies:
            tier = getattr(strategy, "tier", getattr(strategy, "__name__", "strategy"))
            try:
                result = await strategy(item)
            except Exception as exc:
                log.warning("%s streaming failed for %s: %s", tier, item.title, exc)
                continue
            metrics.stream_fallbacks_total.labels(tier=result.tier).inc()
            return result
        raise UnplayableItem(f"every streaming tier failed for {item.title}")
