"""Shared fixtures: temp-file database, fake market data, fake stream and senders."""
import dataclasses
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from solalertbot.cache import TokenCache
from solalertbot.models import Alert, MarketData, User
from solalertbot.service import AlertService
from solalertbot.sol_price import SolPriceTracker
from solalertbot.storage import Database

T1 = "Tkn1" + "A" * 40
T2 = "Tkn2" + "B" * 40
T3 = "Tkn3" + "C" * 40


class FakeGateway:
    """Serves MarketData from a dict; an Exception value is raised instead."""

    def __init__(self, data: Optional[Dict[str, object]] = None):
        self.data = dict(data or {})
        self.cache = TokenCache()
        self.calls: List[tuple] = []

    async def get_market_data(self, token, fresh=False):
        self.calls.append((token, fresh))
        value = self.data.get(token)
        if isinstance(value, Exception):
            raise value
        return dataclasses.replace(value) if value is not None else None


class FakeStream:
    def __init__(self):
        self.current_token = None
        self.connected = False
        self.on_swap = None
        self.subscribed: List[str] = []
        self.stopped = 0
        self.lifecycle: List[str] = []

    async def subscribe(self, token):
        self.current_token = token
        self.connected = True
        self.subscribed.append(token)
        return True

    async def stop(self):
        self.current_token = None
        self.connected = False
        self.stopped += 1
        self.lifecycle.append("stop")

    async def drain(self):
        self.lifecycle.append("drain")


class FakeSender:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent: List[tuple] = []

    async def send(self, recipient, subject, body):
        self.sent.append((recipient, subject, body))
        return self.ok


async def _no_sol_price():
    return None


def market(token, price=1.0, market_cap=1_000_000.0, supply=1_000_000.0, name="Token", symbol="TKN"):
    return MarketData(address=token, price=price, market_cap=market_cap, circulating_supply=supply,
                      name=name, symbol=symbol, source="test")


@pytest.fixture
async def db(tmp_path):
    # a file rather than :memory: so concurrent sessions get their own connections
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'alerts.db'}")
    await database.init()
    yield database
    await database.dispose()


@pytest.fixture
def gateway():
    return FakeGateway({T1: market(T1), T2: market(T2), T3: market(T3)})


@pytest.fixture
def stream():
    return FakeStream()


@pytest.fixture
def senders():
    return {"email": FakeSender(), "telegram": FakeSender(), "discord": FakeSender()}


@pytest.fixture
def sol_price():
    tracker = SolPriceTracker(sources=(_no_sol_price,))
    tracker.price_usd = 150.0
    return tracker


@pytest.fixture
def service(db, gateway, stream, senders, sol_price):
    return AlertService(db, gateway=gateway, sol_price=sol_price, stream=stream, senders=senders,
                        enabled={"email": True, "telegram": True, "discord": True})


@pytest.fixture
async def user(db):
    async with db.session() as s:
        async with s.begin():
            u = User(wallet_address="Wa11et" + "9" * 38, email="trader@example.com",
                     telegram_chat_id="424242", discord_user_id="1234567890")
            s.add(u)
    return u


_BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


async def add_alert(db, user, token, *, threshold_type="price", value="100", comparison="above",
                    channel="email", minutes=0) -> Alert:
    """Insert an alert directly; ``minutes`` offsets created_at so ordering is deterministic."""
    async with db.session() as s:
        async with s.begin():
            a = Alert(user_id=user.id, token_address=token, threshold_type=threshold_type,
                      threshold_value=Decimal(value), comparison=comparison, channel=channel,
                      created_at=_BASE_TIME + timedelta(minutes=minutes))
            s.add(a)
    return a
