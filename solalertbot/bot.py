import discord
from discord.ext import commands

from .config import LOG_LEVEL, STREAM_URL
from .logging_setup import log
from .service import AlertService


class Bot(commands.Bot):
    """Discord host for the alert service; also the client Discord DMs go through."""

    def __init__(self, service: AlertService):
        intents = discord.Intents.default()
        # DMs only; no text commands are read
        intents.message_content = False
        super().__init__(command_prefix="!", intents=intents)
        self.service = service
        discord_sender = service.dispatcher.senders.get("discord")
        if discord_sender is not None:
            discord_sender.client = self

    async def setup_hook(self):
        await self.service.start()

    async def on_ready(self):
        guilds = ", ".join([f"{g.name}({g.id})" for g in self.guilds]) or "none"
        log.info(f"Logged in as {self.user} | Guilds: [{guilds}] | LOG_LEVEL={LOG_LEVEL} | STREAM={STREAM_URL}")

    async def close(self):
        await self.service.stop()
        await super().close()
