import asyncio
import json

import aiohttp

from solalertbot.stream import LivePriceStream, StreamState, parse_swap

from conftest import T1, T2


class FakeWS:
    def __init__(self, messages=()):
        self.closed = False
        self.sent = []
        self._messages = list(messages)

    async def send_str(self, data):
        self.sent.append(json.loads(data))

    async def receive(self, timeout=None):
        if not self._messages:
            raise asyncio.TimeoutError
        return self._messages.pop(0)

    async def close(self):
        self.closed = True


def _text(payload):
    return aiohttp.WSMessage(aiohttp.WSMsgType.TEXT, json.dumps(payload), None)


def _swap(token, price):
    return {"jsonrpc": "2.0", "method": "swapNotification",
            "params": {"signature": "sig", "blockTime": 1700000000,
                       "swap": {"baseTokenMint": token, "quotePrice": str(price), "swapType": "buy"}}}


def test_parse_swap():
    event = parse_swap(_swap(T1, 0.002)["params"])
    assert event.token == T1
    assert event.price_in_quote == 0.002
    assert event.tx_ref == "sig"
    assert parse_swap({"swap": {"baseTokenMint": T1, "quotePrice": "nope"}}) is None
    assert parse_swap({"swap": {"baseTokenMint": T1, "quotePrice": "0"}}) is None


async def test_ack_marks_subscribed_and_resets_attempts():
    stream = LivePriceStream("key", "wss://example")
    stream.current_token = T1
    stream.reconnect_attempts = 3
    stream._handle_message({"jsonrpc": "2.0", "id": 1, "result": {"subscription_id": 42}})
    assert stream.state == StreamState.SUBSCRIBED
    assert stream.subscription_id == 42
    assert stream.reconnect_attempts == 0


async def test_read_loop_dispatches_only_current_token():
    seen = []

    async def on_swap(event):
        seen.append(event)

    stream = LivePriceStream("key", "wss://example", on_swap=on_swap)
    stream.current_token = T1
    ws = FakeWS([
        _text({"id": 1, "result": {"subscription_id": 9}}),
        _text(_swap(T2, 5.0)),
        _text(_swap(T1, 0.002)),
        aiohttp.WSMessage(aiohttp.WSMsgType.TEXT, "{broken", None),
        _text({"id": 2, "error": {"message": "rate limited"}}),
        aiohttp.WSMessage(aiohttp.WSMsgType.CLOSE, None, None),
    ])
    await stream._read_loop(ws)
    await stream.drain()
    assert [e.token for e in seen] == [T1]


async def test_handler_errors_are_contained():
    async def boom(event):
        raise RuntimeError("handler failed")

    stream = LivePriceStream("key", "wss://example", on_swap=boom)
    stream.current_token = T1
    stream._handle_message(_swap(T1, 1.0))
    await stream.drain()


async def test_idle_connection_counts_as_lost():
    stream = LivePriceStream("key", "wss://example", idle_timeout=0.01)
    await asyncio.wait_for(stream._read_loop(FakeWS()), timeout=1)


async def test_reconnects_are_bounded():
    stream = LivePriceStream("key", "wss://example", reconnect_delay=0, max_reconnects=3)
    attempts = 0

    async def refuse():
        nonlocal attempts
        attempts += 1
        raise aiohttp.ClientConnectionError("refused")

    stream._connect = refuse
    assert await stream.subscribe(T1)
    await asyncio.wait_for(stream._task, timeout=1)
    assert attempts == 4
    assert stream.state == StreamState.DISCONNECTED
    assert not stream.connected
    assert stream.current_token == T1


async def test_subscribe_switches_in_place_when_connected():
    stream = LivePriceStream("key", "wss://example")
    ws = FakeWS()
    stream._ws, stream.current_token, stream.subscription_id = ws, T1, 7

    assert await stream.subscribe(T2)
    assert [m["method"] for m in ws.sent] == ["swapUnsubscribe", "swapSubscribe"]
    assert ws.sent[0]["params"] == {"subscription_id": 7}
    assert ws.sent[1]["params"] == {"include": {"baseTokenMint": [T2]}}
    assert stream.current_token == T2
    assert stream._task is None


async def test_stop_releases_the_slot():
    stream = LivePriceStream("key", "wss://example")
    ws = FakeWS()
    stream._ws, stream.current_token, stream.subscription_id = ws, T1, 7
    await stream.stop()
    assert ws.closed
    assert ws.sent[0]["method"] == "swapUnsubscribe"
    assert stream.current_token is None
    assert stream.state == StreamState.DISCONNECTED


async def test_invalid_address_is_refused():
    stream = LivePriceStream("key", "wss://example")
    assert not await stream.subscribe("0xdeadbeef")
    assert stream.current_token is None
