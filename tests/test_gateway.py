from solalertbot.dex import choose_consensus_pair, market_data_from_pairs
from solalertbot.gateway import MarketDataGateway
from solalertbot.models import MarketData

from conftest import T1


def _pair(mc, liq=1000.0, dex="raydium", price="0.5", name="Token", symbol="TKN"):
    return {"chainId": "solana", "dexId": dex, "priceUsd": price, "marketCap": mc,
            "liquidity": {"usd": liq}, "volume": {"h24": 10.0},
            "baseToken": {"address": T1, "name": name, "symbol": symbol}}


async def _none(_token):
    return None


async def _no_meta(_token):
    return {}


def _gateway(birdeye=_none, dex=_none, meta=_no_meta, supply=_none):
    return MarketDataGateway(birdeye=birdeye, dexscreener=dex, metadata=meta, supply=supply)


async def test_falls_back_to_dexscreener():
    async def dex(_token):
        return {"pairs": [_pair(500_000)]}

    data = await _gateway(dex=dex).get_market_data(T1)
    assert data.market_cap == 500_000
    assert data.price == 0.5
    assert data.symbol == "TKN"
    assert data.source.startswith("dexscreener")


async def test_absent_when_every_provider_fails():
    assert await _gateway().get_market_data(T1) is None


async def test_market_cap_derived_from_supply():
    async def birdeye(token):
        return MarketData(address=token, price=0.01, market_cap=None, source="birdeye")

    async def meta(_token):
        return {"name": "Bonk", "symbol": "BONK"}

    async def supply(_token):
        return 2_000_000.0

    data = await _gateway(birdeye=birdeye, meta=meta, supply=supply).get_market_data(T1)
    assert data.circulating_supply == 2_000_000.0
    assert data.market_cap == 20_000.0
    assert (data.name, data.symbol) == ("Bonk", "BONK")


async def test_cached_unless_fresh():
    calls = []

    async def birdeye(token):
        calls.append(token)
        return MarketData(address=token, price=1.0, market_cap=5.0, circulating_supply=5.0,
                          name="A", symbol="A", source="birdeye")

    gw = _gateway(birdeye=birdeye)
    await gw.get_market_data(T1)
    await gw.get_market_data(T1)
    assert len(calls) == 1
    await gw.get_market_data(T1, fresh=True)
    assert len(calls) == 2


async def test_validate_token_rejects_bad_address():
    assert not await _gateway().validate_token("not-an-address")


def test_consensus_pair_ignores_outlier_and_blacklist():
    pairs = [_pair(1_000_000), _pair(1_100_000), _pair(950_000, liq=5.0),
             _pair(90_000_000), _pair(1_000_000, dex="heaven")]
    best, consensus = choose_consensus_pair(pairs, T1)
    assert best["dexId"] == "raydium"
    assert 900_000 < consensus < 1_200_000
    assert best["marketCap"] != 90_000_000


def test_market_data_from_pairs_without_pairs():
    assert market_data_from_pairs({"pairs": []}, T1) is None
    assert market_data_from_pairs(None, T1) is None


async def test_get_price_reads_through_cache():
    async def birdeye(token):
        return MarketData(address=token, price=0.25, market_cap=250.0, circulating_supply=1000.0,
                          name="A", symbol="A", source="birdeye")

    gw = _gateway(birdeye=birdeye)
    assert await gw.get_price(T1) == 0.25
    assert await _gateway().get_price(T1) is None
