"""
In-memory stand-ins for the voice client, voice channel and upstream clients.
"""

import asyncio

from music.audio_source import PlayableItem, QualitySnapshot, SearchCandidate
from music.errors import UnplayableItem, UpstreamError
from music.streaming import StreamResult


def make_item(name: str, **kwargs) -> PlayableItem:
    defaults = {
        "title": name,
        "author": f"{name} artist",
        "url": f"https://www.youtube.com/watch?v={name[:11]:_<11}",
        "duration": 200,
        "requester": "tester",
    }
    defaults.update(kwargs)
    return PlayableItem(**defaults)


async def until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class FakeSource:
    def __init__(self, volume: float = 0.5):
        self.volume = volume
        self.cleaned = False

    def cleanup(self):
        self.cleaned = True


class FakeVoiceClient:
    def __init__(self, channel):
        self.channel = channel
        self.connected = True
        self.disconnected = False
        self.paused = False
        self.source = None
        self.after = None
        self.played = []
        self.latency = 0.02

    def is_connected(self):
        return self.connected

    def play(self, source, *, after=None):
        self.source = source
        self.after = after
        self.played.append(source)

    def finish(self, error=None):
        """Simulate the end of the current track."""
        after, self.source, self.after = self.after, None, None
        if after is not None:
            after(error)

    def stop(self):
        if self.source is not None:
            self.finish()

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    async def move_to(self, channel):
        self.channel = channel

    async def disconnect(self, *, force=False):
        self.connected = False
        self.disconnected = True


class FakeGuild:
    def __init__(self, guild_id: int = 1):
        self.id = guild_id
        self.voice_client = None


class FakeVoiceChannel:
    def __init__(self, guild=None):
        self.guild = guild or FakeGuild()
        self.connects = 0

    async def connect(self, *, self_deaf=False):
        self.connects += 1
        vc = FakeVoiceClient(self)
        self.guild.voice_client = vc
        return vc


class FakeOpener:
    """Opens every item as a primary stream unless told otherwise."""

    def __init__(self, failing=(), replacements=None):
        self.failing = set(failing)
        self.replacements = replacements or {}
        self.opened = []

    async def open(self, item):
        self.opened.append(item)
        if item.url in self.failing:
            raise UnplayableItem(f"every streaming tier failed for {item.title}")
        if item.url in self.replacements:
            return StreamResult(FakeSource(), self.replacements[item.url], "alternative")
        return StreamResult(FakeSource(), item, "primary", QualitySnapshot(128, "opus", "webm"))


class RecordingListener:
    def __init__(self):
        self.events = []

    async def now_playing(self, item, tier):
        self.events.append(("now_playing", item, tier))

    async def unplayable(self, item):
        self.events.append(("unplayable", item))

    async def playback_error(self, item):
        self.events.append(("playback_error", item))

    def names(self):
        return [e[0] for e in self.events]


class FakeYouTube:
    def __init__(self, results=None, info=None, basic=None, streams=None):
        self.results = results or {}
        self.info = info or {}
        self.basic = basic or {}
        self.streams = streams or {}
        self.searches = []

    async def search(self, text, limit):
        self.searches.append((text, limit))
        return list(self.results.get(text, []))[:limit]

    async def video_info(self, url):
        if url not in self.info:
            raise UpstreamError(f"video unavailable: {url}")
        return self.info[url]

    async def basic_info(self, url):
        if url not in self.basic:
            raise UpstreamError(f"video unavailable: {url}")
        return self.basic[url]

    async def stream_info(self, url, selector):
        if url not in self.streams:
            raise UpstreamError(f"no stream: {url}")
        return self.streams[url]


def candidate(title, url, duration=200, is_live=False, channel="Channel"):
    return SearchCandidate(title=title, channel=channel, url=url, duration=duration, is_live=is_live)
