import asyncio, time
from typing import Dict, Optional, Tuple
from .config import CACHE_TTL_SECONDS
from .models import MarketData

class TokenCache:
    """Market data keyed by token address; stale rows are dropped by ``evict_expired``."""

    def __init__(self, ttl: float = CACHE_TTL_SECONDS, clock=time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._rows: Dict[str, Tuple[float, MarketData]] = {}
        self._lock = asyncio.Lock()

    async def get(self, ca: str) -> Optional[MarketData]:
        async with self._lock:
            row = self._rows.get(ca)
        if row is None:
            return None
        ts, data = row
        if self._clock() - ts > self.ttl:
            return None
        return data

    async def put(self, ca: str, data: MarketData):
        async with self._lock:
            self._rows[ca] = (self._clock(), data)

    async def evict_expired(self) -> int:
        now = self._clock()
        async with self._lock:
            stale = [ca for ca, (ts, _) in self._rows.items() if now - ts > self.ttl]
            for ca in stale:
                self._rows.pop(ca, None)
        return len(stale)

    def __len__(self):
        return len(self._rows)
