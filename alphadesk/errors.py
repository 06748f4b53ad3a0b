"""Error taxonomy for the signal-to-decision engine.

None of these propagate past the phase controller: each wake catches them per
step, logs, and moves on.
"""

from __future__ import annotations


class AlphaDeskError(Exception):
    """Base class for every error raised by alphadesk."""


class ConfigError(AlphaDeskError):
    """A tunable is unknown or outside its allowed range."""


class ProviderUnavailable(AlphaDeskError):
    """A collaborator call failed, timed out, or returned nothing usable."""

    def __init__(self, what: str, reason: str = "") -> None:
        self.what = what
        self.reason = reason
        super().__init__(f"{what} unavailable: {reason}" if reason else f"{what} unavailable")


class AssetIneligible(AlphaDeskError):
    """Symbol is not tradable, on a disallowed exchange, or outside the crypto universe."""

    def __init__(self, symbol: str, reason: str) -> None:
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"{symbol}: {reason}")


class JudgeParseError(AlphaDeskError):
    """The judge response could not be read as the expected structure."""


class RateBudgetExhausted(AlphaDeskError):
    """The daily quota for a rate-limited collaborator is used up."""

    def __init__(self, name: str, limit: int) -> None:
        self.name = name
        self.limit = limit
        super().__init__(f"rate budget '{name}' exhausted ({limit}/day)")


class OrderRejected(AlphaDeskError):
    """The brokerage refused (or never filled) an order."""

    def __init__(self, symbol: str, reason: str) -> None:
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"order for {symbol} rejected: {reason}")
