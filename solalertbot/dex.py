import asyncio, math, aiohttp
from typing import Dict, List, Optional, Tuple
from .config import DEX_TOKEN_URL, DEX_BLACKLIST
from .helpers import _percentile, _median
from .logging_setup import get_logger
from .models import MarketData

log = get_logger("dex")

async def fetch_dex_token(address: str) -> Optional[dict]:
    url = DEX_TOKEN_URL.format(address=address.strip())
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=12)) as s:
            async with s.get(url) as r:
                if r.status != 200:
                    log.warning(f"DexScreener {r.status} for {address}")
                    return None
                return await r.json()
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        log.warning(f"DexScreener request failed for {address}: {type(e).__name__}: {e}")
        return None

def _f(v) -> Optional[float]:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if f > 0 and math.isfinite(f) else None

def resolve_mc_value(pair: Dict) -> Tuple[Optional[float], str]:
    for key in ("marketCap", "fdv"):
        val = _f(pair.get(key))
        if val: return val, key
    return None, "none"

def _not_blacklisted(p: Dict) -> bool:
    return (p.get("dexId") or "").lower() not in DEX_BLACKLIST

def _liquidity(p: Dict) -> Tuple[float, float]:
    liq = float((p.get("liquidity") or {}).get("usd") or 0.0)
    vol = float((p.get("volume") or {}).get("h24") or 0.0)
    return liq, vol

def choose_consensus_pair(pairs: List[Dict], ca: str) -> Tuple[Optional[Dict], float]:
    """Pick the Solana pair whose market cap sits closest to the cross-venue median.

    Outliers are trimmed in log space (1.5 IQR) when three or more venues
    report a value; ties go to deeper liquidity, then volume.
    """
    flt = [p for p in pairs or []
           if p.get("chainId") == "solana"
           and (p.get("baseToken") or {}).get("address") == ca
           and _not_blacklisted(p)]
    cands = []
    for p in flt:
        mc, _src = resolve_mc_value(p)
        if mc:
            liq, vol = _liquidity(p)
            cands.append((p, mc, liq, vol))
    if not cands:
        return (flt[0] if flt else None), 0.0

    logs = sorted(math.log10(mc) for _, mc, _, _ in cands)
    base = [mc for _, mc, _, _ in cands]
    if len(logs) >= 3:
        q1 = _percentile(logs, 0.25); q3 = _percentile(logs, 0.75); iqr = q3 - q1
        kept = [10**x for x in logs if q1 - 1.5*iqr <= x <= q3 + 1.5*iqr]
        if len(kept) >= 2: base = kept
    consensus = _median(base)

    def key(c):
        _p, mc, liq, vol = c
        return (abs(mc - consensus) / consensus, -liq, -vol)
    best = min(cands, key=key)[0]
    return best, consensus

def market_data_from_pairs(data: Optional[dict], ca: str) -> Optional[MarketData]:
    if not data or not data.get("pairs"):
        return None
    best, _consensus = choose_consensus_pair(data["pairs"], ca)
    if not best:
        return None
    base = best.get("baseToken") or {}
    mc, src = resolve_mc_value(best)
    return MarketData(
        address=ca, price=_f(best.get("priceUsd")), market_cap=mc,
        name=base.get("name") or "", symbol=base.get("symbol") or "",
        source=f"dexscreener:{src}",
    )
