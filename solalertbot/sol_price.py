import asyncio, time
from typing import Optional
import aiohttp
from .config import JUPITER_PRICE_URL, COINGECKO_SOL_URL, SOL_REFRESH_SECONDS, SOL_FRESH_SECONDS
from .constants import SOL_MINT
from .logging_setup import get_logger

log = get_logger("sol-price")

async def _get_json(url: str) -> Optional[dict]:
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10)) as s:
            async with s.get(url) as r:
                if r.status != 200: return None
                return await r.json()
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        log.warning(f"GET {url.split('?')[0]} failed: {type(e).__name__}: {e}")
        return None

async def fetch_jupiter_sol() -> Optional[float]:
    body = await _get_json(JUPITER_PRICE_URL.format(mint=SOL_MINT))
    try:
        return float(body["data"][SOL_MINT]["price"])
    except (TypeError, KeyError, ValueError):
        return None

async def fetch_coingecko_sol() -> Optional[float]:
    body = await _get_json(COINGECKO_SOL_URL)
    try:
        return float(body["solana"]["usd"])
    except (TypeError, KeyError, ValueError):
        return None


class SolPriceTracker:
    """Last known SOL/USD price, refreshed out of band.

    Readers take ``price_usd`` as-is and never wait on a refresh.
    """

    def __init__(self, sources=(fetch_jupiter_sol, fetch_coingecko_sol),
                 interval: float = SOL_REFRESH_SECONDS, clock=time.time):
        self.price_usd: float = 0.0
        self.last_updated: float = 0.0
        self.interval = interval
        self._sources = sources
        self._clock = clock
        self._updating = False

    async def refresh(self) -> float:
        if self._updating:
            return self.price_usd
        self._updating = True
        try:
            for source in self._sources:
                price = await source()
                if price and price > 0:
                    self.price_usd = price
                    self.last_updated = self._clock()
                    log.debug(f"SOL price updated: ${price:,.2f} ({source.__name__})")
                    break
            else:
                log.warning("All SOL price sources failed; keeping last value")
        finally:
            self._updating = False
        return self.price_usd

    async def run(self, stop: asyncio.Event):
        while not stop.is_set():
            try:
                await self.refresh()
            except Exception:
                log.exception("SOL price refresh error")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def is_fresh(self) -> bool:
        return self.last_updated > 0 and self._clock() - self.last_updated <= SOL_FRESH_SECONDS

    def calculate_market_cap(self, circulating_supply: Optional[float], quote_price: Optional[float]) -> float:
        """circulating_supply × SOL/USD × token price in SOL."""
        if not circulating_supply or not quote_price or self.price_usd <= 0:
            return 0.0
        return float(circulating_supply) * self.price_usd * float(quote_price)

    def price_in_usd(self, quote_price: Optional[float]) -> Optional[float]:
        if not quote_price or self.price_usd <= 0:
            return None
        return float(quote_price) * self.price_usd
