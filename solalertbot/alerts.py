import time
from collections import defaultdict
from typing import Dict, List, Optional

from .gateway import MarketDataGateway
from .helpers import crossed, humanize, format_price, short_ca, utcnow
from .logging_setup import get_logger
from .models import Alert, SwapEvent
from .notifications import NotificationDispatcher
from .selector import MonitoringTargetSelector
from .storage import Database, active_alerts, fill_token_info, get_alert, trigger_alert

log = get_logger("alerts")


def current_value(alert: Alert, price: Optional[float], market_cap: Optional[float]) -> Optional[float]:
    return price if alert.threshold_type == "price" else market_cap


class AlertEngine:
    """Evaluates active alerts from both the periodic sweep and the live stream.

    Both paths go through ``evaluate_token``; the guarded UPDATE in
    ``storage.trigger_alert`` decides which one fires, so an alert is
    notified at most once no matter how the paths interleave.
    """

    def __init__(self, db: Database, gateway: MarketDataGateway, dispatcher: NotificationDispatcher,
                 selector: MonitoringTargetSelector):
        self.db = db
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.selector = selector
        self.last_check_time: Optional[float] = None

    async def sweep(self, token: Optional[str] = None) -> int:
        async with self.db.session() as s:
            alerts = await active_alerts(s, token)
        self.last_check_time = time.time()
        if not alerts:
            return 0

        groups: Dict[str, List[Alert]] = defaultdict(list)
        for a in alerts:
            groups[a.token_address].append(a)
        log.debug(f"Sweeping {len(alerts)} alert(s) across {len(groups)} token(s)")

        for ca, group in groups.items():
            try:
                data = await self.gateway.get_market_data(ca, fresh=True)
                if data is None:
                    log.warning(f"No market data for {short_ca(ca)}; skipping {len(group)} alert(s)")
                    continue
                await self.evaluate_token(ca, data.price, data.market_cap, alerts=group,
                                          name=data.name, symbol=data.symbol)
            except Exception:
                log.exception(f"Sweep failed for {short_ca(ca)}")
        return len(alerts)

    async def evaluate_token(self, token: str, price: Optional[float], market_cap: Optional[float],
                             alerts: Optional[List[Alert]] = None, *, name: str = "", symbol: str = "") -> int:
        """Fire every alert on ``token`` whose threshold is crossed. Returns how many fired."""
        if alerts is None:
            async with self.db.session() as s:
                alerts = await active_alerts(s, token)
        fired = 0
        for alert in alerts:
            value = current_value(alert, price, market_cap)
            if not crossed(alert.comparison, value, alert.threshold_value):
                continue
            try:
                if await self._fire(alert, value, name, symbol):
                    fired += 1
            except Exception:
                log.exception(f"Failed to trigger alert {alert.id}")
        if fired:
            await self.selector.on_token_alerts_exhausted(token)
        return fired

    async def _fire(self, alert: Alert, value: float, name: str, symbol: str) -> bool:
        now = utcnow()
        async with self.db.session() as s:
            async with s.begin():
                if not await trigger_alert(s, alert.id, now):
                    log.debug(f"Alert {alert.id} already triggered elsewhere")
                    return False
                alert.is_triggered, alert.is_active, alert.triggered_at = True, False, now
                alert.token_name = alert.token_name or name or None
                alert.token_symbol = alert.token_symbol or symbol or None
                await fill_token_info(s, alert.id, name, symbol)
                await self.dispatcher.enqueue(s, alert, value)
        shown = format_price(value) if alert.threshold_type == "price" else humanize(value)
        log.info(f"Alert fired: {alert.label} {alert.threshold_type} {alert.comparison} "
                 f"{alert.threshold_value} (current ${shown})")
        return True

    async def handle_swap(self, event: SwapEvent):
        price_usd, market_cap = self.selector.observe(event)
        if price_usd is None and market_cap is None:
            return
        mt = self.selector.tokens.get(event.token)
        await self.evaluate_token(event.token, price_usd, market_cap,
                                  name=mt.name if mt else "", symbol=mt.symbol if mt else "")

    async def force_check(self, token: Optional[str] = None) -> int:
        log.info(f"Forced check{' for ' + short_ca(token) if token else ''}")
        return await self.sweep(token)

    async def test_alert(self, alert_id: str) -> bool:
        """Send a notification for an alert right now without changing its state."""
        async with self.db.session() as s:
            alert = await get_alert(s, alert_id)
        if alert is None:
            return False
        data = await self.gateway.get_market_data(alert.token_address)
        value = current_value(alert, data.price, data.market_cap) if data else None
        ok = await self.dispatcher.send_now(alert, value)
        log.info(f"Test notification for alert {alert_id}: {'sent' if ok else 'failed'}")
        return ok
