"""Turns a user query into a single :class:`PlayableItem`.

Three query shapes are understood: catalog (Spotify) track links, video
(YouTube) links and free text. Catalog links and unreachable video links are
reduced to a free-text search; only the search picks what actually plays.
"""
from __future__ import annotations

import logging
import time

from . import metrics
from .audio_source import PlayableItem, YouTubeClient, is_live_info, item_from_info
from .errors import (
    LiveContentUnsupported,
    MalformedLink,
    NoResult,
    ResolutionFailure,
    UpstreamError,
)
from .spotify_resolver import SpotifyResolver
from .url_parser import InputType, classify, extract_video_id, normalize_video_url

log = logging.getLogger(__name__)

SEARCH_LIMIT = 3
MIN_DURATION = 10  # seconds


class MediaResolver:
    def __init__(self, youtube: YouTubeClient, catalog: SpotifyResolver | None = None) -> None:
        self.youtube = youtube
        self.catalog = catalog

    async def resolve(self, query: str, *, requester: str = "") -> PlayableItem:
        started = time.monotonic()
        try:
            item = await self._resolve(query, requester)
        except ResolutionFailure as exc:
            metrics.resolutions_total.labels(outcome=exc.reason.name.lower()).inc()
            raise
        finally:
            metrics.resolve_seconds.observe(time.monotonic() - started)
        metrics.resolutions_total.labels(outcome="ok").inc()
        return item

    async def _resolve(self, query: str, requester: str) -> PlayableItem:
        input_type, value = classify(query)
        if input_type is InputType.CATALOG_TRACK:
            return await self._resolve_catalog_track(value, requester)
        if input_type is InputType.VIDEO_URL:
            return await self._resolve_video_link(value, requester)
        return await self.search(value, requester=requester)

    async def _resolve_catalog_track(self, track_id: str, requester: str) -> PlayableItem:
        if not track_id:
            raise MalformedLink("no track id in Spotify link")
        if self.catalog is None:
            raise UpstreamError("Spotify is not configured")
        track = await self.catalog.get_track(track_id)
        log.info("Found Spotify track: %s by %s", track.name, track.primary_artist)
        return await self.search(track.search_text, requester=requester)

    async def _resolve_video_link(self, url: str, requester: str) -> PlayableItem:
        canonical = normalize_video_url(url)
        if canonical is None:
            raise MalformedLink(f"not a valid YouTube link: {url}")

        try:
            info = await self.youtube.video_info(canonical)
        except UpstreamError as exc:
            log.info("Direct video info failed for %s, falling back to search: %s", canonical, exc)
            return await self.search(await self._fallback_title(canonical), requester=requester)

        if is_live_info(info):
            raise LiveContentUnsupported(f"{canonical} is a live broadcast")
        return item_from_info(info, canonical, requester)

    async def _fallback_title(self, canonical: str) -> str:
        try:
            basic = await self.youtube.basic_info(canonical)
        except UpstreamError as exc:
            log.info("Basic info also failed for %s: %s", canonical, exc)
        else:
            if basic.get("title"):
                return basic["title"]
        return extract_video_id(canonical) or canonical

    async def search(self, text: str, *, requester: str = "") -> PlayableItem:
        """Return the best-ranked candidate that is not live, has a locator and lasts >= 10s."""
        text = text.strip()
        if not text:
            raise NoResult("empty query")
        candidates = await self.youtube.search(text, SEARCH_LIMIT)
        for candidate in candidates:
            if candidate.is_live or not candidate.url or candidate.duration < MIN_DURATION:
                continue
            log.info("Found: %s", candidate.title)
            return candidate.to_item(requester)
        raise NoResult(f"no playable result for {text!r}")
