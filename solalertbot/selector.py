"""Decides which token holds the single stream slot."""
import time
from typing import Dict, Optional, Tuple

from .gateway import MarketDataGateway
from .helpers import short_ca
from .logging_setup import get_logger
from .models import MonitoredToken, SwapEvent
from .sol_price import SolPriceTracker
from .storage import Database, count_active_for_token, oldest_active_alert, tokens_with_active_alerts
from .stream import LivePriceStream

log = get_logger("selector")


class MonitoringTargetSelector:
    def __init__(self, db: Database, gateway: MarketDataGateway, sol_price: SolPriceTracker,
                 stream: LivePriceStream):
        self.db = db
        self.gateway = gateway
        self.sol_price = sol_price
        self.stream = stream
        self.tokens: Dict[str, MonitoredToken] = {}

    @property
    def current_token(self) -> Optional[str]:
        return self.stream.current_token

    def status(self) -> dict:
        return {"currently_subscribed_token": self.stream.current_token,
                "stream_connected": self.stream.connected}

    async def on_alert_created(self, token: str):
        current = self.stream.current_token
        if current is None:
            await self._watch(token)
        elif current != token:
            log.debug(f"Slot held by {short_ca(current)}; {short_ca(token)} relies on sweeps")

    async def on_token_alerts_exhausted(self, token: str):
        async with self.db.session() as s:
            remaining = await count_active_for_token(s, token)
            if remaining > 0:
                log.debug(f"{short_ca(token)} still has {remaining} active alert(s)")
                return
            others = await tokens_with_active_alerts(s, exclude=[token])

        self.tokens.pop(token, None)
        current = self.stream.current_token
        if current is not None and current != token:
            return
        if current is None and not others:
            return
        if others:
            log.info(f"No alerts left on {short_ca(token)}; switching stream to {short_ca(others[0])}")
            await self._watch(others[0])
        else:
            log.info("No tokens with active alerts; stopping stream")
            await self.stream.stop()
            self.tokens.clear()

    async def resume_on_startup(self) -> Optional[str]:
        async with self.db.session() as s:
            oldest = await oldest_active_alert(s)
        if oldest is None:
            log.info("No active alerts; stream not started")
            return None
        log.info(f"Resuming stream on {oldest.label} ({short_ca(oldest.token_address)})")
        await self._watch(oldest.token_address)
        return oldest.token_address

    async def _watch(self, token: str):
        self.tokens.clear()
        data = await self.gateway.get_market_data(token, fresh=True)
        mt = MonitoredToken(address=token)
        if data is not None:
            mt.name, mt.symbol = data.name, data.symbol
            mt.circulating_supply = data.circulating_supply or data.total_supply
        else:
            log.warning(f"No market data for {short_ca(token)}; market-cap alerts wait for the sweep")
        self.tokens[token] = mt
        await self.stream.subscribe(token)

    def observe(self, event: SwapEvent) -> Tuple[Optional[float], Optional[float]]:
        """Record a swap and return (price in USD, market cap) for the token."""
        mt = self.tokens.get(event.token)
        if mt is None:
            return None, None
        mt.last_observed_price = event.price_in_quote
        mt.updated_ts = time.time()
        price_usd = self.sol_price.price_in_usd(event.price_in_quote)
        mc = self.sol_price.calculate_market_cap(mt.circulating_supply, event.price_in_quote)
        return price_usd, (mc or None)
