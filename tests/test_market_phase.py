from __future__ import annotations

from datetime import datetime

from alphadesk.models import MarketClock
from alphadesk.scheduler.phase import EASTERN, is_just_opened, is_premarket_window, market_phase


def _et(year: int, month: int, day: int, hour: int, minute: int) -> float:
    return datetime(year, month, day, hour, minute, tzinfo=EASTERN).timestamp()


def test_premarket_window_is_0925_to_0929_on_weekdays() -> None:
    assert is_premarket_window(_et(2024, 1, 8, 9, 25)) is True
    assert is_premarket_window(_et(2024, 1, 8, 9, 29)) is True
    assert is_premarket_window(_et(2024, 1, 8, 9, 24)) is False
    assert is_premarket_window(_et(2024, 1, 8, 9, 30)) is False
    # Saturday
    assert is_premarket_window(_et(2024, 1, 6, 9, 27)) is False


def test_windows_follow_daylight_saving() -> None:
    assert is_premarket_window(_et(2024, 7, 8, 9, 26)) is True
    assert is_just_opened(_et(2024, 7, 8, 9, 32)) is True
    assert is_just_opened(_et(2024, 7, 8, 9, 33)) is False


def test_market_phase_names() -> None:
    open_ts = _et(2024, 1, 8, 9, 31)
    pre_ts = _et(2024, 1, 8, 9, 27)
    night_ts = _et(2024, 1, 8, 22, 0)

    opened = market_phase(MarketClock(is_open=True), open_ts, crypto_enabled=False)
    assert opened.name == "open"
    assert opened.just_opened is True
    assert opened.scan_equities is True

    pre = market_phase(MarketClock(is_open=False), pre_ts, crypto_enabled=True)
    assert pre.name == "pre_open"
    assert pre.scan_equities is True
    assert pre.crypto_active is True

    closed = market_phase(MarketClock(is_open=False), night_ts, crypto_enabled=True)
    assert closed.name == "closed"
    assert closed.scan_equities is False
    assert closed.just_opened is False


def test_just_opened_requires_open_clock() -> None:
    phase = market_phase(MarketClock(is_open=False), _et(2024, 1, 8, 9, 31), crypto_enabled=False)
    assert phase.just_opened is False
    assert phase.name == "closed"
