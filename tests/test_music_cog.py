"""
Tests for the music cog's command plumbing and announcements.
"""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

import discord
from discord.ext import commands
from fakes import FakeOpener, FakeVoiceChannel, make_item, until

from cogs.music_cog import (
    Announcer,
    MusicCog,
    format_duration,
    latency_rating,
    quality_rating,
)
from music.errors import NoResult, NothingPlaying
from music.i18n import t
from music.player import PlayerState


class GatedResolver:
    def __init__(self, item=None, error=None):
        self.item = item
        self.error = error
        self.started = False
        self.gate = asyncio.Event()

    async def resolve(self, query, *, requester=""):
        self.started = True
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.item


class TestHelpers(unittest.TestCase):
    def test_format_duration(self):
        self.assertEqual(format_duration(0), "LIVE")
        self.assertEqual(format_duration(65), "1:05")
        self.assertEqual(format_duration(3725), "1:02:05")

    def test_quality_rating(self):
        self.assertEqual(quality_rating(320), "quality_excellent")
        self.assertEqual(quality_rating(256), "quality_excellent")
        self.assertEqual(quality_rating(160), "quality_high")
        self.assertEqual(quality_rating(96), "quality_good")
        self.assertEqual(quality_rating(48), "quality_standard")

    def test_latency_rating(self):
        self.assertEqual(latency_rating(20), "rating_excellent")
        self.assertEqual(latency_rating(100), "rating_good")
        self.assertEqual(latency_rating(150), "rating_fair")
        self.assertEqual(latency_rating(201), "rating_poor")


class TestEnqueueQuery(unittest.IsolatedAsyncioTestCase):
    def make_cog(self, resolver):
        return MusicCog(MagicMock(), resolver=resolver, opener=FakeOpener())

    async def test_resolved_item_starts_playing(self):
        item = make_item("a")
        resolver = GatedResolver(item)
        resolver.gate.set()
        cog = self.make_cog(resolver)
        channel = FakeVoiceChannel()
        text_channel = MagicMock(send=AsyncMock())

        result, position = await cog._enqueue_query(1, channel, text_channel, "a song", "tester")

        self.assertEqual((result, position), (item, 1))
        player = cog.players.get(1)
        self.assertIs(player.state, PlayerState.STREAMING)
        text_channel.send.assert_awaited()

    async def test_stop_during_resolution_discards_item(self):
        resolver = GatedResolver(make_item("a"))
        cog = self.make_cog(resolver)
        channel = FakeVoiceChannel()

        task = asyncio.create_task(
            cog._enqueue_query(1, channel, MagicMock(send=AsyncMock()), "a song", "tester")
        )
        await until(lambda: resolver.started)
        await cog.players.get(1).stop()
        resolver.gate.set()

        _, position = await task
        self.assertIsNone(position)
        self.assertNotIn(1, cog.players)
        self.assertEqual(channel.connects, 0)

    async def test_play_resolving_when_last_track_ends_joins_live_queue(self):
        resolver = GatedResolver(make_item("b"))
        resolver.gate.set()
        cog = self.make_cog(resolver)
        channel = FakeVoiceChannel()
        text_channel = MagicMock(send=AsyncMock())
        await cog._enqueue_query(1, channel, text_channel, "a", "tester")
        player = cog.players.get(1)

        resolver.gate = asyncio.Event()
        resolver.started = False
        task = asyncio.create_task(cog._enqueue_query(1, channel, text_channel, "b", "tester"))
        await until(lambda: resolver.started)
        channel.guild.voice_client.finish()
        await until(lambda: player.state is PlayerState.IDLE)
        self.assertFalse(player.closed)

        resolver.gate.set()
        item, position = await task

        self.assertEqual(position, 1)
        self.assertIs(cog.players.get(1), player)
        self.assertIs(player.state, PlayerState.STREAMING)
        self.assertEqual(player.queue.items, [item])
        self.assertEqual(channel.connects, 1)

    async def test_cancelled_resolution_does_not_pin_player(self):
        cog = self.make_cog(GatedResolver(make_item("a")))
        resolver = cog.resolver
        task = asyncio.create_task(
            cog._enqueue_query(1, FakeVoiceChannel(), MagicMock(send=AsyncMock()), "a", "tester")
        )
        await until(lambda: resolver.started)
        player = cog.players.get(1)

        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertEqual(player.pending_requests, 0)
        await player.release_if_idle()
        self.assertNotIn(1, cog.players)

    async def test_failed_resolution_releases_idle_player(self):
        resolver = GatedResolver(error=NoResult("nothing"))
        resolver.gate.set()
        cog = self.make_cog(resolver)

        with self.assertRaises(NoResult):
            await cog._enqueue_query(1, FakeVoiceChannel(), MagicMock(), "zzz", "tester")
        self.assertNotIn(1, cog.players)

    async def test_stopped_player_is_replaced_on_next_play(self):
        resolver = GatedResolver(make_item("a"))
        resolver.gate.set()
        cog = self.make_cog(resolver)
        channel = FakeVoiceChannel()
        text_channel = MagicMock(send=AsyncMock())

        await cog._enqueue_query(1, channel, text_channel, "a", "tester")
        first = cog.players.get(1)
        await first.stop()
        _, position = await cog._enqueue_query(1, channel, text_channel, "a", "tester")

        self.assertEqual(position, 1)
        self.assertIsNot(cog.players.get(1), first)


class TestCommandErrors(unittest.IsolatedAsyncioTestCase):
    def make_ctx(self):
        ctx = MagicMock()
        ctx.send = AsyncMock()
        return ctx

    async def test_music_error_gets_localized_reply(self):
        cog = MusicCog(MagicMock(), resolver=GatedResolver(), opener=FakeOpener())
        ctx = self.make_ctx()

        await cog.cog_command_error(ctx, commands.CommandInvokeError(NothingPlaying("idle")))

        ctx.send.assert_awaited_once_with(t("nothing_playing"), ephemeral=True)

    async def test_unexpected_error_gets_generic_reply(self):
        cog = MusicCog(MagicMock(), resolver=GatedResolver(), opener=FakeOpener())
        ctx = self.make_ctx()

        with self.assertLogs("cogs.music_cog", level="ERROR"):
            await cog.cog_command_error(ctx, commands.CommandInvokeError(RuntimeError("boom")))

        ctx.send.assert_awaited_once_with(t("error_generic"), ephemeral=True)


class TestAnnouncer(unittest.IsolatedAsyncioTestCase):
    async def test_now_playing_title_reflects_tier(self):
        channel = MagicMock(send=AsyncMock())
        announcer = Announcer(channel)

        await announcer.now_playing(make_item("a"), "alternative")

        embed = channel.send.await_args.kwargs["embed"]
        self.assertEqual(embed.title, t("now_playing_alternative_title"))

    async def test_send_failures_are_logged(self):
        response = MagicMock(status=403, reason="Forbidden")
        channel = MagicMock(send=AsyncMock(side_effect=discord.HTTPException(response, "no perms")))
        announcer = Announcer(channel)

        with self.assertLogs("cogs.music_cog", level="WARNING"):
            await announcer.unplayable(make_item("a"))


if __name__ == "__main__":
    unittest.main()
