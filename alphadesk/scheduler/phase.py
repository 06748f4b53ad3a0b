"""Market-phase windows in exchange (America/New_York) wall-clock time."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from alphadesk.models import MarketClock

EASTERN = ZoneInfo("America/New_York")

PREMARKET_MINUTES = range(25, 30)  # 09:25-09:29
JUST_OPENED_MINUTES = range(30, 33)  # 09:30-09:32


def eastern(now: float) -> datetime:
    return datetime.fromtimestamp(now, tz=EASTERN)


def _in_window(now: float, minutes: range) -> bool:
    local = eastern(now)
    return local.weekday() < 5 and local.hour == 9 and local.minute in minutes


def is_premarket_window(now: float) -> bool:
    return _in_window(now, PREMARKET_MINUTES)


def is_just_opened(now: float) -> bool:
    return _in_window(now, JUST_OPENED_MINUTES)


@dataclass(frozen=True)
class MarketPhase:
    market_open: bool
    premarket: bool
    just_opened: bool
    crypto_active: bool

    @property
    def name(self) -> str:
        if self.market_open:
            return "open"
        if self.premarket:
            return "pre_open"
        return "closed"

    @property
    def scan_equities(self) -> bool:
        return self.market_open or self.premarket


def market_phase(clock: MarketClock, now: float, crypto_enabled: bool) -> MarketPhase:
    return MarketPhase(
        market_open=clock.is_open,
        premarket=is_premarket_window(now),
        just_opened=clock.is_open and is_just_opened(now),
        crypto_active=crypto_enabled,
    )
