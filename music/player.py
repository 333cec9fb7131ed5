"""Playback controller: one :class:`GuildPlayer` per guild.

A player owns its guild's :class:`GuildQueue` and voice connection. Every
state change runs as a job on the player's single worker task, so commands,
end-of-track callbacks and cooldown retries for one guild never interleave.
Different guilds run on independent workers.

States::

    IDLE -> CONNECTING -> STREAMING -> IDLE ... -> DESTROYED

A player is destroyed when stopped, or when the last item finishes while no
query for its guild is still resolving. It then refuses new jobs and removes
itself from the registry.
"""
from __future__ import annotations

import asyncio
import functools
import logging
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Optional, Protocol

import discord

from . import metrics
from .audio_source import PlayableItem
from .errors import NothingPlaying, NothingToSkip, NotInVoiceChannel, UnplayableItem
from .queue_manager import GuildQueue
from .streaming import StreamOpener

log = logging.getLogger(__name__)

COOLDOWN = 2.0  # seconds before continuing after a failed track

Job = Callable[[], Awaitable[Any]]


class PlayerState(Enum):
    IDLE = auto()
    CONNECTING = auto()
    STREAMING = auto()
    DESTROYED = auto()


class PlaybackListener(Protocol):
    async def now_playing(self, item: PlayableItem, tier: str) -> None: ...

    async def unplayable(self, item: PlayableItem) -> None: ...

    async def playback_error(self, item: PlayableItem) -> None: ...


class GuildPlayer:
    def __init__(
        self,
        guild_id: int,
        opener: StreamOpener,
        *,
        queue: GuildQueue | None = None,
        listener: PlaybackListener | None = None,
        on_destroy: Callable[[GuildPlayer], None] | None = None,
        cooldown: float = COOLDOWN,
    ) -> None:
        self.guild_id = guild_id
        self.queue = queue if queue is not None else GuildQueue()
        self.opener = opener
        self.listener = listener
        self.cooldown = cooldown
        self.state = PlayerState.IDLE
        self.closed = False
        self.pending_requests = 0  # queries being resolved for this player
        self.channel: Optional[discord.abc.Connectable] = None
        self._on_destroy = on_destroy
        self._loop = asyncio.get_running_loop()
        self._inbox: asyncio.Queue[tuple[Job, Optional[asyncio.Future]] | None] = asyncio.Queue()
        self._token = 0
        self._retry_handle: asyncio.TimerHandle | None = None
        self._owns_connection = False  # counted in the voice_connections gauge
        self._done = asyncio.Event()
        self._worker = self._loop.create_task(self._run())
        metrics.active_players.inc()

    # ── public commands ─────────────────────────────────────────────────

    async def enqueue(self, item: PlayableItem, channel: discord.abc.Connectable) -> int | None:
        """Queue an item and start playback if idle.

        Returns the item's 1-indexed position, or None when the player was
        stopped before the item arrived.
        """
        if self.closed:
            return None
        return await self._submit(functools.partial(self._enqueue, item, channel))

    async def skip(self) -> PlayableItem:
        return await self._submit(self._skip)

    async def stop(self) -> None:
        await self._submit(self._destroy)

    async def pause(self) -> None:
        await self._submit(self._pause)

    async def resume(self) -> None:
        await self._submit(self._resume)

    async def set_volume(self, fraction: float) -> bool:
        """Store the volume; True if the playing stream picked it up immediately."""
        return await self._submit(functools.partial(self._set_volume, fraction))

    async def release_if_idle(self) -> None:
        """Destroy the player if it never got anything to play."""
        if self.closed:
            return
        await self._submit(self._release_if_idle)

    async def wait_closed(self) -> None:
        await self._done.wait()

    # ── worker ──────────────────────────────────────────────────────────

    async def _run(self) -> None:
        while True:
            entry = await self._inbox.get()
            if entry is None:
                break
            job, fut = entry
            try:
                result = await job()
            except Exception as exc:
                if fut is None:
                    log.exception("Guild %s: playback event failed", self.guild_id)
                elif not fut.done():
                    fut.set_exception(exc)
            else:
                if fut is not None and not fut.done():
                    fut.set_result(result)
        self._done.set()

    async def _submit(self, job: Job) -> Any:
        if self.closed:
            raise NothingPlaying(f"player for guild {self.guild_id} is stopped")
        fut = self._loop.create_future()
        self._inbox.put_nowait((job, fut))
        return await fut

    def _post(self, job: Job) -> None:
        if not self.closed:
            self._inbox.put_nowait((job, None))

    def _after(self, token: int, error: Exception | None) -> None:
        # Called from the voice client's audio thread.
        self._loop.call_soon_threadsafe(
            self._post, functools.partial(self._track_ended, token, error)
        )

    def _schedule_retry(self) -> None:
        self._retry_handle = self._loop.call_later(self.cooldown, self._post, self._retry)

    # ── jobs ────────────────────────────────────────────────────────────

    async def _enqueue(self, item: PlayableItem, channel: discord.abc.Connectable) -> int | None:
        if self.closed:
            return None
        position = self.queue.enqueue(item)
        self._update_queue_gauge()
        log.info("Guild %s: queued %s at #%d", self.guild_id, item.title, position)
        if self.state is PlayerState.IDLE and self._retry_handle is None:
            await self._start(channel)
        return position

    async def _start(self, channel: discord.abc.Connectable | None = None) -> None:
        if channel is not None:
            self.channel = channel
        head = self.queue.peek_head()
        if head is None:
            if self.pending_requests:
                # a query is still resolving; it will start playback or release us
                self.state = PlayerState.IDLE
                return
            await self._destroy()
            return

        self.state = PlayerState.CONNECTING
        try:
            vc = await self._ensure_voice(self.channel)
        except Exception as exc:
            log.warning("Guild %s: could not join voice: %s", self.guild_id, exc)
            await self._destroy()
            raise

        # a stop() submitted now queues behind every tier of this open
        try:
            result = await self.opener.open(head)
        except UnplayableItem as exc:
            log.warning("Guild %s: %s", self.guild_id, exc)
            await self._drop_failed(head, "unplayable")
            return

        if result.item is not head:
            log.info("Guild %s: replacing %s with %s", self.guild_id, head.title, result.item.title)
            self.queue.replace_head(result.item)
        self.queue.quality = result.quality
        if hasattr(result.source, "volume"):
            result.source.volume = self.queue.volume

        self._token += 1
        token = self._token
        try:
            vc.play(result.source, after=lambda error: self._after(token, error))
        except discord.ClientException as exc:
            log.warning("Guild %s: voice client refused %s: %s", self.guild_id, result.item.title, exc)
            result.source.cleanup()
            await self._drop_failed(result.item, "stream")
            return

        self.queue.source = result.source
        self.queue.is_playing = True
        self.state = PlayerState.STREAMING
        metrics.tracks_played_total.inc()
        log.info("Guild %s: now playing %s (%s)", self.guild_id, result.item.title, result.tier)
        await self._notify("now_playing", result.item, result.tier)

    async def _track_ended(self, token: int, error: Exception | None) -> None:
        if self.closed or token != self._token or self.state is not PlayerState.STREAMING:
            return
        finished = self.queue.peek_head()
        self.queue.source = None
        self.queue.is_playing = False
        self.queue.quality = None
        self.state = PlayerState.IDLE
        if error is not None:
            log.error("Guild %s: playback error on %s: %s", self.guild_id, finished.title, error)
            await self._drop_failed(finished, "stream", event="playback_error")
            return
        self.queue.advance()
        self._update_queue_gauge()
        await self._start()

    async def _drop_failed(self, item: PlayableItem, kind: str, event: str = "unplayable") -> None:
        metrics.playback_errors_total.labels(kind=kind).inc()
        self.queue.advance()
        self._update_queue_gauge()
        self.state = PlayerState.IDLE
        self._schedule_retry()
        await self._notify(event, item)

    async def _retry(self) -> None:
        self._retry_handle = None
        if self.closed or self.state is not PlayerState.IDLE:
            return
        await self._start()

    async def _skip(self) -> PlayableItem:
        vc = self._active_voice()
        if len(self.queue) <= 1:
            raise NothingToSkip("no further track to skip to")
        current = self.queue.peek_head()
        vc.stop()  # fires the after callback -> _track_ended
        log.info("Guild %s: skipped %s", self.guild_id, current.title)
        return current

    async def _pause(self) -> None:
        self._active_voice().pause()

    async def _resume(self) -> None:
        self._active_voice().resume()

    async def _set_volume(self, fraction: float) -> bool:
        return self.queue.set_volume(fraction)

    async def _release_if_idle(self) -> None:
        if (
            self.state is PlayerState.IDLE
            and not self.queue.items
            and self._retry_handle is None
            and self.pending_requests == 0
        ):
            await self._destroy()

    async def _destroy(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.state = PlayerState.DESTROYED
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        self.queue.clear()
        self.queue.source = None
        vc, self.queue.voice_client = self.queue.voice_client, None
        try:
            if vc is not None:
                vc.stop()
                await vc.disconnect(force=True)
        finally:
            if self._owns_connection:
                self._owns_connection = False
                metrics.voice_connections.dec()
            self._update_queue_gauge()
            metrics.active_players.dec()
            if self._on_destroy is not None:
                self._on_destroy(self)
            self._inbox.put_nowait(None)
            log.info("Guild %s: queue destroyed", self.guild_id)

    # ── helpers ─────────────────────────────────────────────────────────

    async def _ensure_voice(self, channel: discord.abc.Connectable | None) -> discord.VoiceClient:
        vc = self.queue.voice_client
        if vc is None or not vc.is_connected():
            if channel is None:
                raise NotInVoiceChannel("no voice channel to join")
            vc = channel.guild.voice_client
            if vc is None or not vc.is_connected():
                vc = await channel.connect(self_deaf=True)
                if not self._owns_connection:
                    self._owns_connection = True
                    metrics.voice_connections.inc()
                log.info("Guild %s: connected to %s", self.guild_id, channel)
        if channel is not None and vc.channel != channel:
            await vc.move_to(channel)
        self.queue.voice_client = vc
        return vc

    def _active_voice(self) -> discord.VoiceClient:
        vc = self.queue.voice_client
        if self.state is not PlayerState.STREAMING or self.queue.source is None or vc is None:
            raise NothingPlaying("no active playback")
        return vc

    def _update_queue_gauge(self) -> None:
        metrics.queue_size.labels(guild_id=str(self.guild_id)).set(len(self.queue))

    async def _notify(self, event: str, *args: Any) -> None:
        if self.listener is not None:
            await getattr(self.listener, event)(*args)
