"""Wires the monitor together and runs its periodic loops."""
import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select, update

from .alerts import AlertEngine
from .cache import TokenCache
from .config import ALERT_SWEEP_SECONDS, QUEUE_SWEEP_SECONDS, CACHE_EVICT_SECONDS
from .constants import THRESHOLD_TYPES, COMPARISONS, CHANNELS
from .gateway import MarketDataGateway
from .helpers import is_solana_address, parse_amount, short_ca, to_decimal, utcnow
from .logging_setup import get_logger
from .models import Alert, User
from .notifications import NotificationDispatcher
from .selector import MonitoringTargetSelector
from .senders import DiscordSender, EmailSender, Sender, TelegramSender
from .sol_price import SolPriceTracker
from .storage import Database, alert_counts, get_alert, get_user
from .stream import LivePriceStream

log = get_logger("service")


class AlertValidationError(ValueError):
    pass


class AlertNotFound(LookupError):
    pass


def default_senders(discord_client=None) -> Dict[str, Sender]:
    return {"email": EmailSender(), "telegram": TelegramSender(), "discord": DiscordSender(discord_client)}


class AlertService:
    def __init__(self, db: Optional[Database] = None, *,
                 gateway: Optional[MarketDataGateway] = None,
                 sol_price: Optional[SolPriceTracker] = None,
                 stream: Optional[LivePriceStream] = None,
                 senders: Optional[Dict[str, Sender]] = None,
                 enabled: Optional[Dict[str, bool]] = None,
                 alert_interval: float = ALERT_SWEEP_SECONDS,
                 queue_interval: float = QUEUE_SWEEP_SECONDS,
                 evict_interval: float = CACHE_EVICT_SECONDS):
        self.db = db or Database()
        self.cache = gateway.cache if gateway is not None else TokenCache()
        self.gateway = gateway or MarketDataGateway(self.cache)
        self.sol_price = sol_price or SolPriceTracker()
        self.stream = stream or LivePriceStream()
        self.dispatcher = NotificationDispatcher(self.db, senders or default_senders(), enabled=enabled)
        self.selector = MonitoringTargetSelector(self.db, self.gateway, self.sol_price, self.stream)
        self.engine = AlertEngine(self.db, self.gateway, self.dispatcher, self.selector)
        self.stream.on_swap = self.engine.handle_swap

        self.alert_interval = alert_interval
        self.queue_interval = queue_interval
        self.evict_interval = evict_interval
        self._stop = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    # ------------- lifecycle -------------

    async def start(self):
        await self.db.init()
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(self.sol_price.run(self._stop), name="sol-price"),
            asyncio.create_task(self._every(self.alert_interval, self.engine.sweep, "alert sweep"), name="alert-sweep"),
            asyncio.create_task(self._every(self.queue_interval, self.dispatcher.sweep_queue, "queue sweep"),
                                name="queue-sweep"),
            asyncio.create_task(self._every(self.evict_interval, self.cache.evict_expired, "cache eviction"),
                                name="cache-evict"),
        ]
        await self.selector.resume_on_startup()
        log.info("Alert service started")

    async def stop(self):
        self._stop.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        # close the feed first so no new swap handlers start, then wait for the running ones
        await self.stream.stop()
        await self.stream.drain()
        await self.db.dispose()
        log.info("Alert service stopped")

    async def _every(self, interval: float, job: Callable[[], Awaitable], what: str):
        while not self._stop.is_set():
            try:
                await job()
            except Exception:
                log.exception(f"{what} error")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    # ------------- users -------------

    async def register_user(self, wallet_address: str, *, email: Optional[str] = None,
                            telegram_chat_id: Optional[str] = None, discord_user_id: Optional[str] = None) -> User:
        async with self.db.session() as s:
            async with s.begin():
                user = (await s.execute(select(User).where(User.wallet_address == wallet_address))).scalars().first()
                if user is None:
                    user = User(wallet_address=wallet_address)
                    s.add(user)
                user.email = email or user.email
                user.telegram_chat_id = telegram_chat_id or user.telegram_chat_id
                user.discord_user_id = discord_user_id or user.discord_user_id
            return user

    # ------------- alerts -------------

    async def create_alert(self, owner_id: str, token: str, threshold_type: str, threshold_value,
                           comparison: str, channel: str) -> Alert:
        token = (token or "").strip()
        if not is_solana_address(token):
            raise AlertValidationError(f"invalid token address: {token!r}")
        if threshold_type not in THRESHOLD_TYPES:
            raise AlertValidationError(f"threshold_type must be one of {', '.join(THRESHOLD_TYPES)}")
        if comparison not in COMPARISONS:
            raise AlertValidationError(f"comparison must be one of {', '.join(COMPARISONS)}")
        if channel not in CHANNELS:
            raise AlertValidationError(f"channel must be one of {', '.join(CHANNELS)}")
        try:
            threshold = parse_amount(threshold_value)
        except ValueError as e:
            raise AlertValidationError(str(e)) from None
        if not threshold.is_finite() or threshold <= 0:
            raise AlertValidationError("threshold must be a positive number")

        async with self.db.session() as s:
            owner = await get_user(s, owner_id)
        if owner is None:
            raise AlertValidationError(f"unknown user {owner_id}")
        if not owner.recipient_for(channel):
            raise AlertValidationError(f"user has no {channel} recipient configured")

        data = await self.gateway.get_market_data(token)
        if data is None:
            raise AlertValidationError(f"token {token} not found")

        alert = Alert(user_id=owner_id, token_address=token, token_name=data.name or None,
                      token_symbol=data.symbol or None, threshold_type=threshold_type,
                      threshold_value=threshold, comparison=comparison, channel=channel,
                      circulating_supply=to_decimal(data.circulating_supply or data.total_supply),
                      market_cap=to_decimal(data.market_cap))
        async with self.db.session() as s:
            async with s.begin():
                s.add(alert)
        log.info(f"Alert created: {alert.label} {threshold_type} {comparison} {threshold} via {channel}")
        await self.selector.on_alert_created(token)
        return alert

    async def deactivate_alert(self, alert_id: str) -> Alert:
        now = utcnow()
        async with self.db.session() as s:
            async with s.begin():
                alert = await get_alert(s, alert_id)
                if alert is None:
                    raise AlertNotFound(alert_id)
                alert.is_active = False
                alert.cleared_at = now
                alert.updated_at = now
        await self.selector.on_token_alerts_exhausted(alert.token_address)
        return alert

    async def delete_alert(self, alert_id: str):
        async with self.db.session() as s:
            async with s.begin():
                alert = await get_alert(s, alert_id)
                if alert is None:
                    raise AlertNotFound(alert_id)
                token = alert.token_address
                await s.delete(alert)
        await self.selector.on_token_alerts_exhausted(token)

    async def clear_alerts(self, owner_id: str) -> int:
        """Deactivate every live alert the user owns. Returns how many were cleared."""
        now = utcnow()
        async with self.db.session() as s:
            async with s.begin():
                live = (Alert.user_id == owner_id, Alert.is_active.is_(True), Alert.is_triggered.is_(False))
                tokens = set((await s.execute(select(Alert.token_address).where(*live))).scalars())
                res = await s.execute(update(Alert).where(*live)
                                      .values(is_active=False, cleared_at=now, updated_at=now)
                                      .execution_options(synchronize_session=False))
        for token in sorted(tokens):
            await self.selector.on_token_alerts_exhausted(token)
        log.info(f"Cleared {res.rowcount} alert(s) for user {owner_id} across {len(tokens)} token(s)")
        return res.rowcount

    # ------------- admin -------------

    async def force_check(self, token: Optional[str] = None) -> int:
        return await self.engine.force_check(token)

    async def test_alert(self, alert_id: str) -> bool:
        async with self.db.session() as s:
            if await get_alert(s, alert_id) is None:
                raise AlertNotFound(alert_id)
        return await self.engine.test_alert(alert_id)

    async def get_monitoring_status(self) -> dict:
        async with self.db.session() as s:
            counts = await alert_counts(s)
        return {"active_alert_count": counts["active"], "unique_token_count": counts["unique_tokens"],
                **self.selector.status()}

    async def get_monitoring_stats(self) -> dict:
        async with self.db.session() as s:
            counts = await alert_counts(s)
        return {**counts, "last_check_time": self.engine.last_check_time,
                "sol_price_usd": self.sol_price.price_usd, "sol_price_fresh": self.sol_price.is_fresh(),
                "monitored_token": short_ca(self.selector.current_token) if self.selector.current_token else None}
