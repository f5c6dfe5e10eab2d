"""Channel senders: ``send(recipient, subject, body) -> bool``. They never raise."""
import asyncio
import html
from typing import Optional, Protocol

import aiohttp
import discord
from telegram import Bot as TelegramBot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from .config import SENDGRID_API_KEY, SENDGRID_URL, FROM_EMAIL, FROM_NAME, TELEGRAM_BOT_TOKEN
from .logging_setup import get_logger

log = get_logger("senders")


class Sender(Protocol):
    async def send(self, recipient: str, subject: str, body: str) -> bool: ...


def email_html(subject: str, body: str) -> str:
    text = html.escape(body.replace("*", "").replace("`", "")).replace("\n", "<br>")
    return (
        "<!DOCTYPE html><html><body style=\"font-family:Arial,sans-serif;color:#333\">"
        f"<div style=\"max-width:600px;margin:0 auto;padding:20px\"><h2>{html.escape(subject)}</h2>"
        f"<p>{text}</p></div></body></html>"
    )


class EmailSender:
    def __init__(self, api_key: str = SENDGRID_API_KEY, from_email: str = FROM_EMAIL, from_name: str = FROM_NAME,
                 timeout: float = 15):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    async def send(self, recipient: str, subject: str, body: str) -> bool:
        if not self.api_key:
            log.error("SendGrid API key not configured")
            return False
        payload = {
            "personalizations": [{"to": [{"email": recipient}]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body},
                        {"type": "text/html", "value": email_html(subject, body)}],
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as s:
                async with s.post(SENDGRID_URL, json=payload, headers=headers) as r:
                    if r.status in (200, 202):
                        log.info(f"Email sent to {recipient}")
                        return True
                    log.warning(f"SendGrid {r.status}: {(await r.text())[:200]}")
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.warning(f"Email to {recipient} failed: {type(e).__name__}: {e}")
            return False


class TelegramSender:
    def __init__(self, token: str = TELEGRAM_BOT_TOKEN, bot: Optional[TelegramBot] = None):
        self.bot = bot or (TelegramBot(token=token) if token else None)

    async def send(self, recipient: str, subject: str, body: str) -> bool:
        if self.bot is None:
            log.error("Telegram bot token not configured")
            return False
        try:
            await self.bot.send_message(chat_id=recipient, text=body, parse_mode=ParseMode.MARKDOWN)
            return True
        except TelegramError as e:
            log.warning(f"Telegram send to {recipient} failed: {e}")
            return False


class DiscordSender:
    """Direct-messages a user through a logged-in discord client."""

    def __init__(self, client: Optional[discord.Client] = None):
        self.client = client

    async def send(self, recipient: str, subject: str, body: str) -> bool:
        if self.client is None or not self.client.is_ready():
            log.warning("Discord client not ready")
            return False
        try:
            user = self.client.get_user(int(recipient)) or await self.client.fetch_user(int(recipient))
            await user.send(body[:2000])
            return True
        except (discord.DiscordException, ValueError) as e:
            log.warning(f"Discord DM to {recipient} failed: {type(e).__name__}: {e}")
            return False
