"""Notification queue.

A trigger writes exactly one queue row (in the same transaction as the
trigger itself); ``sweep_queue`` delivers rows in small batches and gives
each row ``MAX_SEND_ATTEMPTS`` tries before marking it failed for good.
"""
from typing import Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from .config import (ENABLE_EMAIL, ENABLE_TELEGRAM, ENABLE_DISCORD, QUEUE_BATCH_SIZE, MAX_SEND_ATTEMPTS,
                     FRONTEND_URL)
from .constants import QUEUE_PENDING, QUEUE_SENT, QUEUE_FAILED
from .helpers import humanize, format_price, utcnow, when_str
from .logging_setup import get_logger
from .models import Alert, NotificationQueueEntry
from .senders import Sender
from .storage import Database, get_user, pending_entries

log = get_logger("notify")

DEFAULT_ENABLED = {"email": ENABLE_EMAIL, "telegram": ENABLE_TELEGRAM, "discord": ENABLE_DISCORD}


def _fmt(threshold_type: str, v) -> str:
    return f"${format_price(v)}" if threshold_type == "price" else f"${humanize(v)}"


def render(alert: Alert, current_value) -> Tuple[str, str]:
    kind = "Price" if alert.threshold_type == "price" else "Market Cap"
    direction = "Above" if alert.comparison == "above" else "Below"
    subject = f"🚨 {alert.label} {kind} Alert: {direction} {_fmt(alert.threshold_type, alert.threshold_value)}"
    name = alert.token_name or alert.label
    body = (
        "🚨 *Token Alert Triggered!*\n\n"
        f"*Token:* {name} ({alert.token_symbol or '—'})\n"
        f"*Address:* `{alert.token_address}`\n\n"
        f"*Alert:* {kind.lower()} {alert.comparison} {_fmt(alert.threshold_type, alert.threshold_value)}\n"
        f"*Current {kind.lower()}:* {_fmt(alert.threshold_type, current_value)}\n\n"
        f"*Triggered at:* {when_str(alert.triggered_at or utcnow())}\n\n"
        "This alert has been automatically disabled and won't trigger again unless you recreate it.\n"
        f"{FRONTEND_URL}/dashboard"
    )
    return subject, body


class NotificationDispatcher:
    def __init__(self, db: Database, senders: Dict[str, Sender], *,
                 enabled: Optional[Dict[str, bool]] = None,
                 batch_size: int = QUEUE_BATCH_SIZE, max_attempts: int = MAX_SEND_ATTEMPTS):
        self.db = db
        self.senders = senders
        self.enabled = dict(DEFAULT_ENABLED if enabled is None else enabled)
        self.batch_size = batch_size
        self.max_attempts = max_attempts

    async def enqueue(self, session: AsyncSession, alert: Alert, current_value) -> NotificationQueueEntry:
        """Add the queue row for a trigger; the caller owns the transaction."""
        subject, body = render(alert, current_value)
        user = await get_user(session, alert.user_id)
        recipient = user.recipient_for(alert.channel) if user else None
        entry = NotificationQueueEntry(alert_id=alert.id, channel=alert.channel, recipient=recipient or "",
                                       subject=subject, body=body, status=QUEUE_PENDING, attempts=0)
        if not recipient:
            log.error(f"No {alert.channel} recipient for alert {alert.id}; recording as failed")
            entry.status = QUEUE_FAILED
        session.add(entry)
        await session.flush()
        return entry

    async def sweep_queue(self) -> int:
        channels = [c for c, on in self.enabled.items() if on]
        if not channels:
            log.debug("All channels disabled; skipping queue sweep")
            return 0
        # disabled channels stay pending and must not take batch slots
        async with self.db.session() as s:
            batch = await pending_entries(s, self.batch_size, self.max_attempts, channels=channels)
        sent = 0
        for entry in batch:
            try:
                ok = await self._deliver(entry.channel, entry.recipient, entry.subject, entry.body)
            except Exception:
                log.exception(f"{entry.channel} sender raised on notification {entry.id}")
                ok = False
            try:
                await self._record(entry.id, ok)
            except Exception:
                log.exception(f"Error recording notification {entry.id}")
                continue
            sent += ok
        return sent

    async def send_now(self, alert: Alert, current_value) -> bool:
        async with self.db.session() as s:
            user = await get_user(s, alert.user_id)
        recipient = user.recipient_for(alert.channel) if user else None
        if not recipient:
            return False
        subject, body = render(alert, current_value)
        return await self._deliver(alert.channel, recipient, subject, body)

    async def _deliver(self, channel: str, recipient: str, subject: str, body: str) -> bool:
        sender = self.senders.get(channel)
        if sender is None:
            log.error(f"No sender registered for {channel}")
            return False
        return bool(await sender.send(recipient, subject, body))

    async def _record(self, entry_id: str, ok: bool):
        async with self.db.session() as s:
            async with s.begin():
                entry = await s.get(NotificationQueueEntry, entry_id, with_for_update=True)
                if entry is None or entry.status != QUEUE_PENDING:
                    return
                if ok:
                    entry.status = QUEUE_SENT
                    entry.sent_at = utcnow()
                    log.info(f"Notification {entry.id} sent via {entry.channel}")
                    return
                entry.attempts += 1
                if entry.attempts >= self.max_attempts:
                    entry.status = QUEUE_FAILED
                    log.warning(f"Notification {entry.id} failed after {entry.attempts} attempts")
                else:
                    log.info(f"Notification {entry.id} attempt {entry.attempts}/{self.max_attempts} failed; will retry")
