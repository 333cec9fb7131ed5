"""Read-only status API for Melodia.

Runs inside the bot process and reads the music cog's players directly.
Started when the WEB_PORT env var is set.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING

import aiohttp.web as web

if TYPE_CHECKING:
    from discord.ext import commands

log = logging.getLogger(__name__)

routes = web.RouteTableDef()


def _get_cog(request: web.Request):
    bot: commands.Bot = request.app["bot"]
    cog = bot.get_cog("MusicCog")
    if cog is None:
        raise web.HTTPServiceUnavailable(text="MusicCog not loaded")
    return cog


@routes.get("/health")
async def health(request: web.Request) -> web.Response:
    bot = request.app["bot"]
    cog = bot.get_cog("MusicCog")
    return web.json_response({
        "status": "ok",
        "guilds": len(bot.guilds),
        "players": len(cog.players) if cog is not None else 0,
    })


@routes.get("/api/guilds/{guild_id}/queue")
async def get_queue(request: web.Request) -> web.Response:
    cog = _get_cog(request)
    try:
        guild_id = int(request.match_info["guild_id"])
    except ValueError:
        raise web.HTTPBadRequest(text="guild_id must be an integer")
    player = cog.players.get(guild_id)
    if player is None or player.closed:
        raise web.HTTPNotFound(text="No queue for this guild")

    queue = player.queue

    def _item(item):
        return {"title": item.title, "author": item.author, "url": item.url,
                "duration": item.duration, "requester": item.requester}

    return web.json_response({
        "state": player.state.name,
        "playing": queue.is_playing,
        "items": [_item(i) for i in queue.items],
        "volume": queue.volume_percent,
        "quality": dataclasses.asdict(queue.quality) if queue.quality else None,
    })


def create_app(bot: commands.Bot) -> web.Application:
    app = web.Application()
    app["bot"] = bot
    app.router.add_routes(routes)
    return app


async def start_web_server(bot: commands.Bot, port: int = 8080) -> web.AppRunner:
    runner = web.AppRunner(create_app(bot))
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    return runner
