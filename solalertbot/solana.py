import asyncio
import aiohttp
from typing import Optional
from .config import SOLANA_RPC
from .helpers import is_solana_address
from .logging_setup import get_logger

log = get_logger("solana")

async def sol_rpc(method: str, params: list, url: str = SOLANA_RPC) -> Optional[dict]:
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=15)) as s:
            async with s.post(url, json={"jsonrpc":"2.0","id":1,"method":method,"params":params}) as r:
                if r.status != 200: return None
                return await r.json()
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        log.warning(f"RPC {method} failed: {type(e).__name__}: {e}")
        return None

async def get_token_supply(mint: str) -> Optional[float]:
    """On-chain supply of an SPL mint in UI units."""
    if not is_solana_address(mint):
        return None
    res = await sol_rpc("getTokenSupply", [mint, {"commitment":"confirmed"}])
    value = ((res or {}).get("result") or {}).get("value") or {}
    try:
        ui = value.get("uiAmount")
        if ui is None:
            ui = int(value["amount"]) / (10 ** int(value["decimals"]))
        return float(ui) if ui and ui > 0 else None
    except (KeyError, TypeError, ValueError):
        return None
