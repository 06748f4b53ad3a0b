from __future__ import annotations

import pytest

from alphadesk.alpha.probability import (
    alpha_confidence,
    avg_abs_return,
    crypto_calculated_probability,
    equity_calculated_probability,
    implied_probability,
    up_days_probability,
)
from alphadesk.alpha.scanner import AlphaScanner, measure_liquidity
from alphadesk.config import AgentConfig
from alphadesk.models import AggregatedMarket, AlphaScanState, Bar, Quote, Signal, Snapshot, Trade
from alphadesk.providers.mock import MockMarketData

NOW = 1_700_000_000.0


def _signal(symbol: str, sentiment: float, *, crypto: bool = False, momentum: float | None = None) -> Signal:
    return Signal(
        symbol=symbol,
        source="crypto" if crypto else "reddit",
        source_detail="test",
        raw_sentiment=sentiment,
        sentiment=sentiment,
        is_crypto=crypto,
        momentum=momentum,
    )


def _snapshot(symbol: str, close: float, prev_close: float, volume: float, spread: float = 0.1) -> Snapshot:
    return Snapshot(
        symbol=symbol,
        latest_trade=Trade(price=close, timestamp=NOW),
        latest_quote=Quote(bid_price=close - spread / 2, ask_price=close + spread / 2),
        daily_bar=Bar(close=close, volume=volume),
        prev_daily_bar=Bar(close=prev_close),
    )


def _rising_bars(count: int = 20) -> list[Bar]:
    return [Bar(timestamp=NOW - (count - i) * 86_400, close=100 * 1.01**i) for i in range(count)]


def test_implied_probability_worked_example_gives_negative_edge() -> None:
    implied = implied_probability(0.04, 0.02)
    assert implied == pytest.approx(1.0)
    assert 0.9 - implied == pytest.approx(-0.1)


def test_implied_probability_falls_back_to_coin_flip() -> None:
    assert implied_probability(0.03, 0.0) == 0.5
    assert implied_probability(0.03, float("nan")) == 0.5
    assert implied_probability(0.0, 0.02) == pytest.approx(0.5)


def test_bar_statistics_need_two_bars() -> None:
    assert avg_abs_return([Bar(close=100)]) is None
    assert up_days_probability([]) is None
    bars = [Bar(close=100), Bar(close=102), Bar(close=99.96)]
    assert avg_abs_return(bars) == pytest.approx(0.02)
    assert up_days_probability(bars) == pytest.approx(0.5)


def test_calculated_probabilities_stay_in_unit_interval() -> None:
    assert equity_calculated_probability(1.4, None) == 1.0
    assert equity_calculated_probability(-0.3, None) == 0.0
    assert equity_calculated_probability(0.5, 1.0) == pytest.approx(0.7)
    assert crypto_calculated_probability(0.8, 3.0) == pytest.approx(0.8)
    assert crypto_calculated_probability(0.0, 50.0) == pytest.approx(0.7 * 0.9)


def test_alpha_confidence_is_half_at_threshold() -> None:
    assert alpha_confidence(0.2, 0.2) == pytest.approx(0.5)
    assert alpha_confidence(1.0, 0.2) == pytest.approx(1.0)
    assert alpha_confidence(-1.0, 0.2) == 0.0


def test_measure_liquidity_without_quote_has_no_spread() -> None:
    liq = measure_liquidity(Snapshot(symbol="X", daily_bar=Bar(close=10.0, volume=500.0)))
    assert liq.price == 10.0
    assert liq.notional == 5_000.0
    assert liq.spread_pct is None


def test_score_rejects_already_priced_in_move() -> None:
    scanner = AlphaScanner(AgentConfig(), MockMarketData())
    market = AggregatedMarket(symbol="NVDA", sentiment_avg=0.9)
    snapshot = _snapshot("NVDA", 104.0, 100.0, 1e6)

    candidate = scanner.score(market, snapshot, measure_liquidity(snapshot), None)

    assert candidate is not None
    assert candidate.implied_prob == pytest.approx(1.0)
    assert candidate.alpha == pytest.approx(-0.1)
    edge, top = scanner.rank([candidate])
    assert edge == []
    assert top == []


def test_crypto_thresholds_are_capped() -> None:
    scanner = AlphaScanner(AgentConfig(alpha_min_edge=0.08, alpha_edge_threshold=0.2), MockMarketData())
    assert scanner.min_edge_for(True) == pytest.approx(0.01)
    assert scanner.threshold_for(True) == pytest.approx(0.03)
    assert scanner.threshold_for(False) == pytest.approx(0.2)

    market = AggregatedMarket(symbol="BTC/USD", is_crypto=True, sentiment_avg=0.8, momentum_avg=3.0)
    snapshot = _snapshot("BTC/USD", 105.0, 100.0, 1e6)
    candidate = scanner.score(market, snapshot, measure_liquidity(snapshot), None)
    assert candidate is not None
    assert candidate.implied_prob == 0.5
    assert candidate.alpha == pytest.approx(0.3)


def test_aggregate_averages_per_symbol_strongest_first() -> None:
    scanner = AlphaScanner(AgentConfig(alpha_scan_max_markets=2), MockMarketData())
    markets = scanner.aggregate(
        [
            _signal("AAPL", 0.2),
            _signal("nvda", 0.8),
            _signal("NVDA", 0.4),
            _signal("ETH/USD", 0.9, crypto=True, momentum=4.0),
        ]
    )
    assert [m.symbol for m in markets] == ["ETH/USD", "NVDA"]
    assert markets[1].sentiment_avg == pytest.approx(0.6)
    assert markets[0].momentum_avg == pytest.approx(4.0)


@pytest.mark.asyncio
async def test_scan_funnel_counts_and_top_alpha() -> None:
    market_data = MockMarketData(
        snapshots={
            "NVDA": _snapshot("NVDA", 100.0, 100.0, 1e6),
            "PENNY": _snapshot("PENNY", 1.0, 1.0, 10.0, spread=0.001),
        },
        bars={"NVDA": _rising_bars()},
    )
    scanner = AlphaScanner(AgentConfig(), market_data, timeout=5.0)
    signals = [_signal("NVDA", 0.9), _signal("PENNY", 0.8), _signal("GHOST", 0.7)]

    state = await scanner.scan(signals, AlphaScanState(), NOW)

    assert state.updated_at == NOW
    assert (state.total, state.volume_pass, state.liquidity_pass, state.edge_pass) == (3, 1, 1, 1)
    (top,) = state.top_alpha
    assert top.symbol == "NVDA"
    assert top.implied_prob == pytest.approx(0.5)
    # 0.6 x sentiment 0.9 + 0.4 x up-day share 1.0
    assert top.calculated_prob == pytest.approx(0.94)
    assert top.alpha == pytest.approx(0.44)
    assert state.edge_candidates == [top]
    assert ("bars", "PENNY") not in market_data.calls


@pytest.mark.asyncio
async def test_scan_respects_interval_and_disable_flag() -> None:
    market_data = MockMarketData()
    previous = AlphaScanState(updated_at=NOW - 10)

    scanner = AlphaScanner(AgentConfig(alpha_scan_interval_seconds=300), market_data)
    assert await scanner.scan([_signal("NVDA", 0.9)], previous, NOW) is previous

    disabled = AlphaScanner(AgentConfig(alpha_scan_enabled=False), market_data)
    assert await disabled.scan([_signal("NVDA", 0.9)], AlphaScanState(), NOW) == AlphaScanState()
    assert market_data.calls == []


@pytest.mark.asyncio
async def test_scan_survives_snapshot_failure() -> None:
    market_data = MockMarketData(fail={"NVDA"})
    scanner = AlphaScanner(AgentConfig(), market_data, timeout=5.0)

    state = await scanner.scan([_signal("NVDA", 0.9)], AlphaScanState(), NOW)

    assert state.total == 1
    assert state.liquidity_pass == 0
    assert state.top_alpha == []
