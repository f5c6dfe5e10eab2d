"""Market data gateway.

One entry point for "what is token X worth right now". Providers are tried
in order (Birdeye, then DexScreener) and the result is cached for a short
TTL; callers that must not see stale values ask with ``fresh=True``.
"""
import asyncio
from typing import Optional

import aiohttp

from .cache import TokenCache
from .config import BIRDEYE_API_KEY, BIRDEYE_MARKET_URL, MORALIS_API_KEY, MORALIS_META_URL
from .dex import fetch_dex_token, market_data_from_pairs
from .helpers import is_solana_address
from .logging_setup import get_logger
from .models import MarketData
from .solana import get_token_supply

log = get_logger("gateway")


def _num(v) -> Optional[float]:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if f > 0 else None


async def fetch_birdeye(address: str, api_key: str = BIRDEYE_API_KEY) -> Optional[MarketData]:
    if not api_key:
        return None
    headers = {"X-API-KEY": api_key, "accept": "application/json", "x-chain": "solana"}
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10)) as s:
            async with s.get(BIRDEYE_MARKET_URL, params={"address": address}, headers=headers) as r:
                if r.status != 200:
                    log.warning(f"Birdeye {r.status} for {address}")
                    return None
                body = await r.json()
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        log.warning(f"Birdeye request failed for {address}: {type(e).__name__}: {e}")
        return None
    data = body.get("data") if body and body.get("success") else None
    if not data:
        return None
    return MarketData(
        address=address,
        price=_num(data.get("price")),
        market_cap=_num(data.get("market_cap")),
        circulating_supply=_num(data.get("circulating_supply")),
        total_supply=_num(data.get("total_supply")),
        source="birdeye",
    )


async def fetch_moralis_metadata(address: str, api_key: str = MORALIS_API_KEY) -> dict:
    if not api_key:
        return {}
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=5)) as s:
            async with s.get(MORALIS_META_URL.format(address=address),
                             headers={"X-API-Key": api_key, "accept": "application/json"}) as r:
                if r.status != 200:
                    return {}
                return await r.json() or {}
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        log.debug(f"Moralis metadata failed for {address}: {e}")
        return {}


class MarketDataGateway:
    def __init__(self, cache: Optional[TokenCache] = None, *,
                 birdeye=fetch_birdeye, dexscreener=fetch_dex_token,
                 metadata=fetch_moralis_metadata, supply=get_token_supply):
        self.cache = cache or TokenCache()
        self._birdeye = birdeye
        self._dexscreener = dexscreener
        self._metadata = metadata
        self._supply = supply

    async def get_market_data(self, token: str, fresh: bool = False) -> Optional[MarketData]:
        if not fresh:
            hit = await self.cache.get(token)
            if hit is not None:
                return hit
        data = await self._fetch(token)
        if data is not None:
            await self.cache.put(token, data)
        return data

    async def get_price(self, token: str) -> Optional[float]:
        data = await self.get_market_data(token)
        return data.price if data else None

    async def validate_token(self, token: str) -> bool:
        if not is_solana_address(token):
            return False
        return await self.get_market_data(token) is not None

    async def _fetch(self, token: str) -> Optional[MarketData]:
        data = await self._birdeye(token)
        dex = None
        if data is None or not (data.price or data.market_cap):
            dex = market_data_from_pairs(await self._dexscreener(token), token)
            if dex is None:
                log.warning(f"No market data for {token}")
                return None
            data = dex

        if not (data.name and data.symbol):
            meta = await self._metadata(token)
            data.name = data.name or meta.get("name") or ""
            data.symbol = data.symbol or meta.get("symbol") or ""
        if not (data.name and data.symbol) and dex is None:
            dex = market_data_from_pairs(await self._dexscreener(token), token)
            if dex is not None:
                data.name = data.name or dex.name
                data.symbol = data.symbol or dex.symbol

        if data.circulating_supply is None:
            data.circulating_supply = data.total_supply or await self._supply(token)
        if data.market_cap is None and data.price and data.circulating_supply:
            data.market_cap = data.price * data.circulating_supply
        return data
