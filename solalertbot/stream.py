"""Live swap stream for a single token.

The provider allows one subscription per connection, so this object holds
at most one token at a time. It is driven exclusively by the monitoring
target selector (``subscribe`` / ``stop``); everything else only reads
``current_token`` / ``connected``.

State machine::

    DISCONNECTED -> CONNECTING -> SUBSCRIBED -> DISCONNECTED -> CONNECTING ...

After ``max_reconnects`` consecutive failures the stream stays DISCONNECTED
until the selector subscribes again.
"""
import asyncio, enum, json
from contextlib import suppress
from typing import Awaitable, Callable, Optional, Set

import aiohttp

from .config import (STREAM_API_KEY, STREAM_URL, STREAM_PING_SECONDS, STREAM_IDLE_TIMEOUT,
                     STREAM_RECONNECT_DELAY, STREAM_MAX_RECONNECTS, STREAM_CONNECT_TIMEOUT)
from .helpers import is_solana_address, short_ca
from .logging_setup import get_logger
from .models import SwapEvent

log = get_logger("stream")

SwapHandler = Callable[[SwapEvent], Awaitable[None]]


class StreamState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


def parse_swap(params: dict) -> Optional[SwapEvent]:
    swap = (params or {}).get("swap") or {}
    token = swap.get("baseTokenMint")
    try:
        price = float(swap.get("quotePrice"))
    except (TypeError, ValueError):
        return None
    if not token or price <= 0:
        return None
    return SwapEvent(token=token, price_in_quote=price, timestamp=params.get("blockTime"),
                     tx_ref=params.get("signature") or "",
                     extra={"usd_value": swap.get("usdValue"), "side": swap.get("swapType"),
                            "quote_mint": swap.get("quoteTokenMint")})


class LivePriceStream:
    def __init__(self, api_key: str = STREAM_API_KEY, url: str = STREAM_URL, *,
                 on_swap: Optional[SwapHandler] = None,
                 reconnect_delay: float = STREAM_RECONNECT_DELAY,
                 max_reconnects: int = STREAM_MAX_RECONNECTS,
                 ping_interval: float = STREAM_PING_SECONDS,
                 idle_timeout: float = STREAM_IDLE_TIMEOUT):
        self.api_key = api_key
        self.url = url
        self.on_swap = on_swap
        self.reconnect_delay = reconnect_delay
        self.max_reconnects = max_reconnects
        self.ping_interval = ping_interval
        self.idle_timeout = idle_timeout

        self.state = StreamState.DISCONNECTED
        self.current_token: Optional[str] = None
        self.subscription_id = None
        self.reconnect_attempts = 0

        self._ws = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._task: Optional[asyncio.Task] = None
        self._dispatches: Set[asyncio.Task] = set()
        self._send_lock = asyncio.Lock()
        self._msg_id = 1

    # ------------- public (selector only) -------------

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def subscribe(self, token: str) -> bool:
        if not is_solana_address(token):
            log.warning(f"Refusing to stream invalid address {token!r}")
            return False
        self.current_token = token
        if self.connected:
            await self._switch(token)
            return True
        self.reconnect_attempts = 0
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="live-price-stream")
        return True

    async def stop(self):
        self.current_token = None
        task, self._task = self._task, None
        if self.connected:
            with suppress(Exception):
                await self._unsubscribe()
            await self._ws.close()
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        self._ws = None
        self.subscription_id = None
        self.state = StreamState.DISCONNECTED
        log.info("Stream stopped")

    async def drain(self):
        """Wait for swap handlers that are still running."""
        pending = [t for t in self._dispatches if t is not asyncio.current_task()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------- connection loop -------------

    async def _connect(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        headers = {"X-API-KEY": self.api_key, "User-Agent": "solalertbot/1.0", "Accept": "application/json"}
        return await asyncio.wait_for(
            self._session.ws_connect(self.url, headers=headers, heartbeat=self.ping_interval,
                                     max_msg_size=1024 * 1024),
            timeout=STREAM_CONNECT_TIMEOUT,
        )

    async def _run(self):
        while self.current_token:
            self.state = StreamState.CONNECTING
            try:
                self._ws = await self._connect()
                log.info(f"Stream connected; subscribing to {short_ca(self.current_token)}")
                await self._send_subscribe(self.current_token)
                await self._read_loop(self._ws)
                log.warning("Stream connection closed")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning(f"Stream error: {type(e).__name__}: {e}")
            finally:
                ws, self._ws = self._ws, None
                if ws is not None and not ws.closed:
                    with suppress(Exception):
                        await ws.close()
                self.subscription_id = None
                self.state = StreamState.DISCONNECTED

            if not self.current_token:
                break
            if self.reconnect_attempts >= self.max_reconnects:
                log.error(f"Max reconnection attempts ({self.max_reconnects}) reached; "
                          "falling back to periodic sweeps")
                break
            self.reconnect_attempts += 1
            log.info(f"Reconnecting ({self.reconnect_attempts}/{self.max_reconnects}) in {self.reconnect_delay}s")
            await asyncio.sleep(self.reconnect_delay)

    async def _read_loop(self, ws):
        while True:
            try:
                msg = await ws.receive(timeout=self.idle_timeout)
            except asyncio.TimeoutError:
                log.warning(f"No traffic for {self.idle_timeout}s; treating connection as lost")
                return
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    payload = json.loads(msg.data)
                except ValueError:
                    log.warning("Unparseable stream message")
                    continue
                self._handle_message(payload)
            elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING,
                              aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                return

    # ------------- protocol -------------

    def _next_id(self) -> int:
        i = self._msg_id; self._msg_id += 1
        return i

    async def _send(self, payload: dict):
        async with self._send_lock:
            await self._ws.send_str(json.dumps(payload))

    async def _send_subscribe(self, token: str):
        await self._send({"jsonrpc": "2.0", "id": self._next_id(), "method": "swapSubscribe",
                          "params": {"include": {"baseTokenMint": [token]}}})

    async def _unsubscribe(self):
        if self.subscription_id is None:
            return
        await self._send({"jsonrpc": "2.0", "id": self._next_id(), "method": "swapUnsubscribe",
                          "params": {"subscription_id": self.subscription_id}})
        self.subscription_id = None

    async def _switch(self, token: str):
        try:
            await self._unsubscribe()
            self.state = StreamState.CONNECTING
            await self._send_subscribe(token)
            log.info(f"Stream switched to {short_ca(token)}")
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            # the read loop sees the broken socket and reconnects with current_token
            log.warning(f"Switch to {short_ca(token)} failed: {e}")

    def _handle_message(self, message: dict):
        if message.get("error"):
            log.warning(f"Stream error reply: {(message['error'] or {}).get('message', message['error'])}")
            return
        result = message.get("result")
        if message.get("id") and isinstance(result, dict) and result.get("subscription_id") is not None:
            self.subscription_id = result["subscription_id"]
            self.state = StreamState.SUBSCRIBED
            self.reconnect_attempts = 0
            log.info(f"Subscribed (id={self.subscription_id}) to {short_ca(self.current_token or '?')}")
            return
        if message.get("method") == "swapNotification":
            event = parse_swap(message.get("params") or {})
            if event is None or event.token != self.current_token:
                return
            if self.on_swap is not None:
                t = asyncio.create_task(self._dispatch(event))
                self._dispatches.add(t)
                t.add_done_callback(self._dispatches.discard)

    async def _dispatch(self, event: SwapEvent):
        try:
            await self.on_swap(event)
        except Exception:
            log.exception(f"Swap handler failed for {short_ca(event.token)}")
