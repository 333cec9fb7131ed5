from __future__ import annotations

import logging
import math
import os
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from music.audio_source import PlayableItem, QualitySnapshot, YouTubeClient
from music.errors import MusicError, NothingPlaying, NotInVoiceChannel
from music.i18n import t
from music.player import GuildPlayer
from music.queue_manager import QueueManager, volume_from_percent
from music.resolver import MediaResolver
from music.spotify_resolver import SpotifyResolver
from music.streaming import StreamOpener
from music.throttle import RequestThrottle

log = logging.getLogger(__name__)

QUEUE_PAGE = 10
VOLUME_STEP = 10

_TIER_TITLES = {
    "primary": "now_playing_title",
    "fallback": "now_playing_fallback_title",
    "alternative": "now_playing_alternative_title",
}


def format_duration(seconds: int) -> str:
    if seconds <= 0:
        return "LIVE"
    m, s = divmod(seconds, 60)
    h, m = divmod(m, 60)
    if h:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


def quality_rating(bitrate: int) -> str:
    if bitrate >= 256:
        return "quality_excellent"
    if bitrate >= 128:
        return "quality_high"
    if bitrate >= 96:
        return "quality_good"
    return "quality_standard"


def latency_rating(ms: int) -> str:
    if ms < 50:
        return "rating_excellent"
    if ms <= 100:
        return "rating_good"
    if ms <= 200:
        return "rating_fair"
    return "rating_poor"


def _to_ms(seconds: float) -> int:
    """Discord reports latency as inf/nan until the first heartbeat."""
    if not math.isfinite(seconds):
        return 0
    return round(seconds * 1000)


def track_embed(item: PlayableItem, title: str, quality: QualitySnapshot | None = None) -> discord.Embed:
    description = t("track_description", title=item.title, author=item.author,
                    duration=format_duration(item.duration))
    if quality is not None and quality.bitrate:
        description += t("quality_line", bitrate=f"{quality.bitrate}kbps",
                         codec=(quality.codec or "?").upper())
    embed = discord.Embed(title=title, description=description, color=discord.Color.green())
    if item.url:
        embed.url = item.url
    if item.thumbnail:
        embed.set_thumbnail(url=item.thumbnail)
    if item.requester:
        embed.add_field(name=t("requested_by"), value=item.requester, inline=True)
    return embed


class Announcer:
    """Posts a player's events to the text channel its queue was created from."""

    def __init__(self, channel: discord.abc.Messageable) -> None:
        self.channel = channel

    async def now_playing(self, item: PlayableItem, tier: str) -> None:
        title = t(_TIER_TITLES.get(tier, "now_playing_title"))
        await self._send(embed=track_embed(item, title))

    async def unplayable(self, item: PlayableItem) -> None:
        await self._send(t("unplayable_announce", title=item.title))

    async def playback_error(self, item: PlayableItem) -> None:
        await self._send(t("playback_error_announce", title=item.title))

    async def _send(self, content: str | None = None, **kwargs) -> None:
        try:
            await self.channel.send(content, **kwargs)
        except discord.HTTPException as exc:
            log.warning("Could not post to channel %s: %s", getattr(self.channel, "id", "?"), exc)


class MusicCog(commands.Cog):
    def __init__(
        self,
        bot: commands.Bot,
        *,
        resolver: MediaResolver | None = None,
        opener: StreamOpener | None = None,
        players: QueueManager | None = None,
    ) -> None:
        self.bot = bot
        self.players = players if players is not None else QueueManager()
        throttle = RequestThrottle()
        youtube = YouTubeClient(throttle, cookiefile=os.getenv("YTDL_COOKIEFILE"))
        self.spotify = SpotifyResolver(throttle)
        self.resolver = resolver or MediaResolver(youtube, self.spotify)
        self.opener = opener or StreamOpener.default(youtube)

    async def cog_load(self) -> None:
        if self.spotify.available:
            await self.spotify.authenticate()

    async def cog_unload(self) -> None:
        for player in self.players:
            try:
                await player.stop()
            except NothingPlaying:
                continue

    async def cog_check(self, ctx: commands.Context) -> bool:
        if ctx.guild is None:
            raise commands.NoPrivateMessage()
        return True

    # ── helpers ──────────────────────────────────────────────────────────

    def _new_player(self, guild_id: int, text_channel: discord.abc.Messageable) -> GuildPlayer:
        return GuildPlayer(
            guild_id,
            self.opener,
            listener=Announcer(text_channel),
            on_destroy=lambda player: self.players.remove(guild_id, player),
        )

    def _player(self, ctx: commands.Context) -> GuildPlayer:
        player = self.players.get(ctx.guild.id)  # type: ignore[union-attr]
        if player is None or player.closed:
            raise NothingPlaying("no queue for this server")
        return player

    @staticmethod
    def _voice_channel(ctx: commands.Context) -> discord.abc.Connectable:
        voice = getattr(ctx.author, "voice", None)
        if voice is None or voice.channel is None:
            raise NotInVoiceChannel("invoker is not in a voice channel")
        return voice.channel

    async def _enqueue_query(
        self,
        guild_id: int,
        voice_channel: discord.abc.Connectable,
        text_channel: discord.abc.Messageable,
        query: str,
        requester: str,
    ) -> tuple[PlayableItem, int | None]:
        """Resolve a query and queue it on the guild's player.

        The player is looked up before resolving, so a stop that lands while
        the query is still resolving makes the enqueue a no-op (position None).
        """
        player = self.players.get_or_create(guild_id, lambda: self._new_player(guild_id, text_channel))
        player.pending_requests += 1
        try:
            try:
                item = await self.resolver.resolve(query, requester=requester)
            finally:
                player.pending_requests -= 1
        except Exception:
            await player.release_if_idle()
            raise
        position = await player.enqueue(item, voice_channel)
        return item, position

    async def _apply_volume(self, ctx: commands.Context, player: GuildPlayer, fraction: float) -> None:
        live = await player.set_volume(fraction)
        level = player.queue.volume_percent
        if live:
            embed = discord.Embed(
                title=t("volume_changed_title"),
                description=t("volume_changed", level=level),
                color=discord.Color.green(),
            )
            await ctx.send(embed=embed)
        else:
            await ctx.send(t("volume_next_track", level=level))

    # ── commands ─────────────────────────────────────────────────────────

    @commands.hybrid_command(name="play", aliases=["tocar", "reproducir", "p"],
                             description="Play a song from a YouTube/Spotify link or search keywords")
    @app_commands.describe(query="Song name, YouTube link or Spotify track link")
    async def play(self, ctx: commands.Context, *, query: str) -> None:
        channel = self._voice_channel(ctx)
        await ctx.send(t("searching", query=query))
        item, position = await self._enqueue_query(
            ctx.guild.id, channel, ctx.channel, query, ctx.author.display_name  # type: ignore[union-attr]
        )
        if position is None:
            await ctx.send(t("stopped_before_queue", title=item.title))
            return
        if position > 1:
            embed = discord.Embed(
                title=t("queued_title"),
                description=t("queued_description", title=item.title, author=item.author,
                              position=position),
                color=discord.Color.green(),
            )
            if item.thumbnail:
                embed.set_thumbnail(url=item.thumbnail)
            await ctx.send(embed=embed)

    @commands.hybrid_command(name="pause", aliases=["pausar"], description="Pause the current song")
    async def pause(self, ctx: commands.Context) -> None:
        await self._player(ctx).pause()
        await ctx.send(t("paused"))

    @commands.hybrid_command(name="resume", aliases=["reanudar", "continuar"],
                             description="Resume the paused song")
    async def resume(self, ctx: commands.Context) -> None:
        await self._player(ctx).resume()
        await ctx.send(t("resumed"))

    @commands.hybrid_command(name="skip", aliases=["saltar"], description="Skip to the next song")
    async def skip(self, ctx: commands.Context) -> None:
        skipped = await self._player(ctx).skip()
        await ctx.send(t("skipped", title=skipped.title))

    @commands.hybrid_command(name="stop", aliases=["detener", "parar"],
                             description="Stop the music and clear the queue")
    async def stop(self, ctx: commands.Context) -> None:
        await self._player(ctx).stop()
        await ctx.send(t("stopped"))

    @commands.hybrid_command(name="queue", aliases=["cola"], description="Show the playback queue")
    async def queue(self, ctx: commands.Context) -> None:
        items = list(self._player(ctx).queue.items)
        if not items:
            raise NothingPlaying("queue is empty")
        head, rest = items[0], items[1:QUEUE_PAGE]
        lines = [t("queue_now", title=head.title, duration=format_duration(head.duration))]
        for i, item in enumerate(rest, start=1):
            lines.append(t("queue_entry", index=i, title=item.title,
                           duration=format_duration(item.duration)))
        embed = discord.Embed(
            title=t("queue_title"),
            description="\n".join(lines),
            color=discord.Color.blurple(),
        )
        embed.set_footer(text=t("queue_footer", count=len(items)))
        await ctx.send(embed=embed)

    @commands.hybrid_command(name="volume", aliases=["volumen", "vol"],
                             description="Set or show the volume")
    @app_commands.describe(level="Volume level (1-100)")
    async def volume(self, ctx: commands.Context, level: Optional[int] = None) -> None:
        player = self._player(ctx)
        if level is None:
            await ctx.send(t("volume_current", level=player.queue.volume_percent))
            return
        await self._apply_volume(ctx, player, volume_from_percent(level))

    @commands.hybrid_command(name="volumeup", aliases=["vol+", "volumen+", "subirvolumen", "volup"],
                             description="Raise the volume by 10%")
    async def volumeup(self, ctx: commands.Context) -> None:
        player = self._player(ctx)
        level = min(100, player.queue.volume_percent + VOLUME_STEP)
        await self._apply_volume(ctx, player, volume_from_percent(level))

    @commands.hybrid_command(name="volumedown", aliases=["vol-", "volumen-", "bajarvolumen", "voldown"],
                             description="Lower the volume by 10%")
    async def volumedown(self, ctx: commands.Context) -> None:
        player = self._player(ctx)
        level = max(1, player.queue.volume_percent - VOLUME_STEP)
        await self._apply_volume(ctx, player, volume_from_percent(level))

    @commands.hybrid_command(name="nowplaying", aliases=["np", "actual", "ahora"],
                             description="Show the current song")
    async def nowplaying(self, ctx: commands.Context) -> None:
        queue = self._player(ctx).queue
        head = queue.peek_head()
        if head is None:
            raise NothingPlaying("queue is empty")
        await ctx.send(embed=track_embed(head, t("now_playing_title"), queue.quality))

    @commands.hybrid_command(name="quality", aliases=["calidad", "q"],
                             description="Show audio quality information")
    async def quality(self, ctx: commands.Context) -> None:
        queue = self._player(ctx).queue
        head = queue.peek_head()
        if head is None:
            raise NothingPlaying("queue is empty")
        snapshot = queue.quality
        if snapshot is None:
            text = t("quality_unavailable")
        else:
            text = t(
                "quality_details",
                bitrate=f"{snapshot.bitrate}kbps" if snapshot.bitrate else t("quality_unknown_bitrate"),
                codec=(snapshot.codec or t("quality_unknown_codec")).upper(),
                container=(snapshot.container or t("quality_unknown_container")).upper(),
            )
            if snapshot.bitrate:
                text += "\n" + t(quality_rating(snapshot.bitrate))
        embed = discord.Embed(
            title=t("quality_title"),
            description=f"**{head.title}**\n{head.author}\n\n{text}",
            color=discord.Color.green(),
        )
        if head.thumbnail:
            embed.set_thumbnail(url=head.thumbnail)
        await ctx.send(embed=embed)

    @commands.hybrid_command(name="connection", aliases=["conexion", "ping"],
                             description="Check the connection quality")
    async def connection(self, ctx: commands.Context) -> None:
        latency = _to_ms(self.bot.latency)
        vc: Optional[discord.VoiceClient] = ctx.guild.voice_client  # type: ignore[union-attr, assignment]
        if vc is not None and vc.is_connected():
            voice = t("voice_ready", latency=_to_ms(vc.latency))
        elif vc is not None:
            voice = t("voice_connecting")
        else:
            voice = t("voice_disconnected")

        if latency > 200:
            color = discord.Color.red()
        elif latency > 100:
            color = discord.Color.orange()
        else:
            color = discord.Color.green()
        embed = discord.Embed(
            title=t("connection_title"),
            description="\n\n".join([
                t("connection_latency", latency=latency, rating=t(latency_rating(latency))),
                f"{t('voice_title')}\n{voice}",
            ]),
            color=color,
        )
        await ctx.send(embed=embed)

    @commands.hybrid_command(name="help", aliases=["ayuda"], description="Show the bot's commands")
    async def help(self, ctx: commands.Context) -> None:
        embed = discord.Embed(
            title=t("help_title"),
            description="\n\n".join(
                t(key) for key in ("help_playback", "help_volume", "help_info", "help_examples")
            ),
            color=discord.Color.green(),
        )
        await ctx.send(embed=embed)

    # ── errors ───────────────────────────────────────────────────────────

    async def cog_command_error(self, ctx: commands.Context, error: Exception) -> None:
        while isinstance(error, (commands.CommandInvokeError, commands.HybridCommandError,
                                 app_commands.CommandInvokeError)):
            error = error.original

        if isinstance(error, MusicError):
            log.info("%s failed in guild %s: %s", ctx.command, getattr(ctx.guild, "id", None), error)
            await ctx.send(t(error.key), ephemeral=True)
        elif isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument)):
            usage = f"{ctx.clean_prefix}{ctx.command.qualified_name} {ctx.command.signature}".strip()
            await ctx.send(t("usage", usage=usage), ephemeral=True)
        elif isinstance(error, commands.NoPrivateMessage):
            return
        else:
            log.error("Unhandled error in %s", ctx.command, exc_info=error)
            await ctx.send(t("error_generic"), ephemeral=True)


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(MusicCog(bot))
