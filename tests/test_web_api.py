"""
Tests for the status API.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

from aiohttp.test_utils import AioHTTPTestCase
from fakes import make_item

from music.audio_source import QualitySnapshot
from music.player import PlayerState
from music.queue_manager import GuildQueue, QueueManager
from web.app import create_app


class TestStatusAPI(AioHTTPTestCase):
    async def get_application(self):
        queue = GuildQueue()
        queue.enqueue(make_item("a"))
        queue.enqueue(make_item("b"))
        queue.is_playing = True
        queue.quality = QualitySnapshot(160, "opus", "webm")

        players = QueueManager()
        players.get_or_create(1, lambda: SimpleNamespace(closed=False, state=PlayerState.STREAMING, queue=queue))

        bot = MagicMock()
        bot.guilds = [object(), object()]
        bot.get_cog.return_value = SimpleNamespace(players=players)
        return create_app(bot)

    async def test_health(self):
        resp = await self.client.request("GET", "/health")
        self.assertEqual(resp.status, 200)
        self.assertEqual(await resp.json(), {"status": "ok", "guilds": 2, "players": 1})

    async def test_queue(self):
        resp = await self.client.request("GET", "/api/guilds/1/queue")
        self.assertEqual(resp.status, 200)
        data = await resp.json()
        self.assertEqual(data["state"], "STREAMING")
        self.assertTrue(data["playing"])
        self.assertEqual([i["title"] for i in data["items"]], ["a", "b"])
        self.assertEqual(data["volume"], 50)
        self.assertEqual(data["quality"], {"bitrate": 160, "codec": "opus", "container": "webm"})

    async def test_unknown_guild(self):
        resp = await self.client.request("GET", "/api/guilds/2/queue")
        self.assertEqual(resp.status, 404)

    async def test_bad_guild_id(self):
        resp = await self.client.request("GET", "/api/guilds/abc/queue")
        self.assertEqual(resp.status, 400)
