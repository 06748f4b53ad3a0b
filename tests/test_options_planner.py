from __future__ import annotations

from datetime import datetime, timezone

import pytest

from alphadesk.config import AgentConfig
from alphadesk.models import OptionChain, OptionContract, OptionSnapshot, Position, Quote
from alphadesk.positions.options import OptionsPlanner, days_to_expiration, target_strike
from alphadesk.providers.mock import MockMarketData, MockOptions

NOW = 1_700_000_000.0
EQUITY = 100_000.0


def _date(days: int) -> str:
    return datetime.fromtimestamp(NOW + days * 86_400, tz=timezone.utc).strftime("%Y-%m-%d")


def _planner(options: MockOptions | None = None) -> OptionsPlanner:
    config = AgentConfig(options_enabled=True, options_max_pct_per_trade=0.02, options_max_total_exposure=0.10)
    market = MockMarketData(quotes={"NVDA": Quote(bid_price=99.9, ask_price=100.0)})
    return OptionsPlanner(config, options or MockOptions(), market, timeout=5.0)


def test_target_strike_shifts_with_delta() -> None:
    assert target_strike(100.0, 0.45, "bullish") == pytest.approx(101.0)
    assert target_strike(100.0, 0.45, "bearish") == pytest.approx(99.0)
    assert target_strike(100.0, 0.5, "bullish") == pytest.approx(100.0)


def test_pick_expiration_prefers_window_midpoint() -> None:
    planner = _planner()
    near, mid, far = _date(10), _date(46), _date(90)
    assert 44 <= days_to_expiration(mid, NOW) <= 46
    assert planner.pick_expiration([near, far, mid, "garbage"], NOW) == mid
    assert planner.pick_expiration([near, far], NOW) is None


def test_can_open_enforces_count_and_exposure() -> None:
    planner = _planner()
    option = Position(symbol="NVDA_C", asset_class="us_option", market_value=1000.0)
    assert planner.can_open([Position(symbol="NVDA", market_value=50_000.0)], EQUITY) is True
    assert planner.can_open([option, option, option], EQUITY) is False
    big = Position(symbol="NVDA_C", asset_class="us_option", market_value=12_000.0)
    assert planner.can_open([big], EQUITY) is False


@pytest.mark.asyncio
async def test_select_contract_applies_delta_spread_and_budget() -> None:
    expiration = _date(46)
    strikes = [95.0, 100.0, 101.0, 105.0, 110.0, 120.0]
    chain = OptionChain(calls=[OptionContract(symbol=f"NVDA_C{int(s)}", strike=s) for s in strikes])
    options = MockOptions(
        expirations={"NVDA": [_date(10), expiration]},
        chains={("NVDA", expiration): chain},
        snapshots={
            "NVDA_C101": OptionSnapshot(symbol="NVDA_C101", delta=0.9, bid_price=3.0, ask_price=3.1),
            "NVDA_C100": OptionSnapshot(symbol="NVDA_C100", delta=0.5, bid_price=1.0, ask_price=2.0),
            "NVDA_C105": OptionSnapshot(symbol="NVDA_C105", delta=0.45, bid_price=2.0, ask_price=2.1),
        },
    )
    planner = _planner(options)

    contract = await planner.select_contract("NVDA", "bullish", EQUITY, NOW)

    assert contract is not None
    assert contract.symbol == "NVDA_C105"
    assert contract.expiration == expiration
    assert contract.mid_price == pytest.approx(2.05)
    assert contract.max_contracts == 9

    spec = planner.order_spec(contract, 1, EQUITY)
    assert (spec.type, spec.time_in_force, spec.qty) == ("limit", "day", 1)
    assert spec.limit_price == pytest.approx(2.05)
    assert planner.order_spec(contract, 20, EQUITY).qty == 9


@pytest.mark.asyncio
async def test_select_contract_none_without_expiration() -> None:
    planner = _planner(MockOptions(expirations={"NVDA": [_date(5)]}))
    assert await planner.select_contract("NVDA", "bullish", EQUITY, NOW) is None
