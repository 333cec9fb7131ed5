import logging
import os

import discord
from discord.ext import commands
from dotenv import load_dotenv

from music.i18n import load_locales, set_locale

load_dotenv()

log = logging.getLogger("melodia")


class Melodia(commands.AutoShardedBot):
    def __init__(self) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(
            command_prefix=os.getenv("COMMAND_PREFIX", "!"),
            intents=intents,
            help_command=None,
        )

    async def setup_hook(self) -> None:
        load_locales()
        set_locale(os.getenv("BOT_LOCALE", "es"))

        await self.load_extension("cogs.music_cog")
        await self.tree.sync()
        log.info("Command tree synced.")

        metrics_port = int(os.getenv("METRICS_PORT", "9090"))
        if metrics_port:
            from music.metrics import start_metrics_server
            try:
                start_metrics_server(metrics_port)
            except OSError as exc:
                log.warning("Failed to start metrics server: %s", exc)
            else:
                log.info("Prometheus metrics server started on :%d", metrics_port)

        web_port = os.getenv("WEB_PORT")
        if web_port:
            from web.app import start_web_server
            try:
                await start_web_server(self, int(web_port))
            except OSError as exc:
                log.warning("Failed to start status API: %s", exc)
            else:
                log.info("Status API started on :%s", web_port)

    async def on_ready(self) -> None:
        guild_count = len(self.guilds)
        log.info("Logged in as %s (ID: %s), %d guilds, %s shard(s)",
                 self.user, self.user.id, guild_count,
                 self.shard_count or 1)
        activity = discord.Activity(
            type=discord.ActivityType.listening,
            name=f"{self.command_prefix}play",
        )
        await self.change_presence(activity=activity)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    token = os.getenv("DISCORD_TOKEN")
    if not token:
        raise SystemExit("DISCORD_TOKEN not set in .env")

    bot = Melodia()
    bot.run(token, log_handler=None)


if __name__ == "__main__":
    main()
