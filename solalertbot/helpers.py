import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Union

Number = Union[int, float, Decimal]

def is_solana_address(addr: str) -> bool:
    if not addr or addr.startswith("0x"): return False
    return 32 <= len(addr) <= 44 and re.fullmatch(r"[1-9A-HJ-NP-Za-km-z]+", addr) is not None

def short_ca(ca: str) -> str: return f"{ca[:4]}…{ca[-4:]}"

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def money(x: Number) -> str:
    n=float(x)
    for u in ["","K","M","B","T"]:
        if abs(n) < 1000: return f"{n:,.2f}{u}"
        n/=1000
    return f"{n:,.2f}P"

def humanize(x: Optional[Number]) -> str:
    if x is None: return "—"
    return money(x)

def format_price(p: Optional[Number]) -> str:
    if p is None: return "—"
    p=float(p)
    if p >= 1: return f"{p:,.6f}".rstrip("0").rstrip(".")
    return f"{p:.10f}".rstrip("0").rstrip(".") or "0"

def to_decimal(v) -> Optional[Decimal]:
    if v is None: return None
    if isinstance(v, Decimal): return v
    try:
        return Decimal(str(v))
    except (InvalidOperation, ValueError):
        return None

def parse_amount(v: Union[str, Number]) -> Decimal:
    """Parse a threshold like ``2500000``, ``250k``, ``2.5m`` or ``1b``."""
    if not isinstance(v, str):
        d = to_decimal(v)
        if d is None: raise ValueError(f"not a number: {v!r}")
        return d
    s=v.lower().replace(",","").replace("$","").strip(); m=1
    if s.endswith("k"): m,s=1_000, s[:-1]
    elif s.endswith("m"): m,s=1_000_000, s[:-1]
    elif s.endswith("b"): m,s=1_000_000_000, s[:-1]
    elif s.endswith("t"): m,s=1_000_000_000_000, s[:-1]
    try:
        return Decimal(s)*m
    except InvalidOperation:
        raise ValueError(f"not a number: {v!r}") from None

def crossed(comparison: str, current: Optional[Number], threshold: Number) -> bool:
    """True when ``current`` is strictly past ``threshold`` in the alert's direction.

    Equal values never count as a crossing and missing data never triggers.
    """
    if current is None: return False
    cur = to_decimal(current); thr = to_decimal(threshold)
    if cur is None or thr is None or not cur.is_finite(): return False
    if comparison == "above": return cur > thr
    if comparison == "below": return cur < thr
    return False

def _percentile(sorted_vals: List[float], p: float) -> float:
    k=(len(sorted_vals)-1)*p; f=int(k); c=min(f+1, len(sorted_vals)-1)
    if f==c or k==f: return sorted_vals[f]
    return sorted_vals[f] + (sorted_vals[c]-sorted_vals[f])*(k-f)

def _median(vals: List[float]) -> float:
    s=sorted(vals); n=len(s)
    if n==0: return 0.0
    return s[n//2] if n%2 else 0.5*(s[n//2-1] + s[n//2])

def when_str(ts: Optional[datetime]) -> str:
    if ts is None: return "—"
    return ts.strftime("%Y-%m-%d %H:%M:%S UTC")
