from __future__ import annotations

import pytest

from alphadesk.models import Asset, Signal
from alphadesk.providers.mock import MockBrokerage
from alphadesk.signals.eligibility import AssetResolver, EligibilityFilter
from alphadesk.symbols import (
    crypto_base_symbol,
    held_symbol_keys,
    is_stablecoin,
    normalize_crypto_symbol,
    symbol_variants,
)


def _signal(symbol: str, *, crypto: bool = False) -> Signal:
    return Signal(
        symbol=symbol,
        source="reddit",
        source_detail="reddit_stocks",
        raw_sentiment=0.5,
        sentiment=0.5,
        is_crypto=crypto,
    )


def _filter(brokerage: MockBrokerage, crypto: list[str], exchanges: list[str] | None = None) -> EligibilityFilter:
    return EligibilityFilter(AssetResolver(brokerage, crypto, timeout=5.0), crypto, exchanges)


def test_symbol_spellings() -> None:
    assert symbol_variants("btc/usd") == ["BTC/USD", "BTCUSD"]
    assert symbol_variants("BTCUSD") == ["BTCUSD", "BTC/USD"]
    assert symbol_variants("NVDA") == ["NVDA"]
    assert normalize_crypto_symbol("ethusd", ["ETH/USD"]) == "ETH/USD"
    assert crypto_base_symbol("SOL/USD") == "SOL"
    assert is_stablecoin("USDC/USD") is True
    assert is_stablecoin("BTC/USD") is False
    assert held_symbol_keys(["BTC/USD"]) == {"BTC/USD", "BTCUSD", "BTC"}


@pytest.mark.asyncio
async def test_filter_drops_unknown_and_untradable() -> None:
    brokerage = MockBrokerage(
        assets={
            "NVDA": Asset(symbol="NVDA", exchange="NASDAQ"),
            "HALT": Asset(symbol="HALT", exchange="NYSE", status="inactive", tradable=False),
        }
    )
    kept = await _filter(brokerage, []).filter([_signal("NVDA"), _signal("HALT"), _signal("ZZZZ")])
    assert [s.symbol for s in kept] == ["NVDA"]


@pytest.mark.asyncio
async def test_filter_applies_exchange_allow_list_to_equities_only() -> None:
    brokerage = MockBrokerage(
        assets={
            "NVDA": Asset(symbol="NVDA", exchange="NASDAQ"),
            "PINK": Asset(symbol="PINK", exchange="OTC"),
        }
    )
    kept = await _filter(brokerage, ["BTC/USD"], ["NASDAQ"]).filter(
        [_signal("NVDA"), _signal("PINK"), _signal("BTCUSD", crypto=True)]
    )
    assert [s.symbol for s in kept] == ["NVDA", "BTC/USD"]
    assert kept[1].is_crypto is True


@pytest.mark.asyncio
async def test_filter_drops_crypto_outside_universe() -> None:
    brokerage = MockBrokerage(assets={"DOGE/USD": Asset(symbol="DOGE/USD", asset_class="crypto")})
    kept = await _filter(brokerage, ["BTC/USD"]).filter([_signal("DOGE/USD", crypto=True), _signal("DOGEUSD")])
    assert kept == []


@pytest.mark.asyncio
async def test_filter_memoizes_per_symbol() -> None:
    class CountingBrokerage(MockBrokerage):
        lookups = 0

        async def get_asset(self, symbol: str) -> Asset | None:
            CountingBrokerage.lookups += 1
            return await super().get_asset(symbol)

    brokerage = CountingBrokerage(assets={"NVDA": Asset(symbol="NVDA")})
    kept = await _filter(brokerage, []).filter([_signal("NVDA"), _signal("nvda"), _signal("NVDA")])
    assert len(kept) == 3
    assert CountingBrokerage.lookups == 1
