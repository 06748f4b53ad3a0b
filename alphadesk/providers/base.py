"""Abstract collaborators the engine consumes.

Concrete network clients live outside this package; anything implementing
these interfaces can be wired in through ``Settings.provider_factory``.
Implementations should raise ``ProviderUnavailable`` (or let transport errors
escape) on failure; the engine wraps every call in a timeout.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass

from alphadesk.models import (
    Account,
    Asset,
    Bar,
    JudgeResponse,
    MarketClock,
    Notification,
    OptionChain,
    OptionSnapshot,
    Order,
    OrderSpec,
    Position,
    Quote,
    Snapshot,
    SocialPost,
)


class MarketDataProvider(abc.ABC):
    @abc.abstractmethod
    async def get_snapshot(self, symbol: str) -> Snapshot | None:
        """Last trade, quote, daily and previous daily bar for one symbol."""

    async def get_snapshots(self, symbols: list[str]) -> dict[str, Snapshot]:
        """Batch variant; the default just loops ``get_snapshot``."""
        out: dict[str, Snapshot] = {}
        for symbol in symbols:
            snap = await self.get_snapshot(symbol)
            if snap is not None:
                out[symbol] = snap
        return out

    @abc.abstractmethod
    async def get_bars(self, symbol: str, timeframe: str, limit: int) -> list[Bar]:
        """Most recent ``limit`` bars, oldest first."""

    @abc.abstractmethod
    async def get_quote(self, symbol: str) -> Quote | None:
        ...


class BrokerageProvider(abc.ABC):
    @abc.abstractmethod
    async def get_account(self) -> Account:
        ...

    @abc.abstractmethod
    async def get_positions(self) -> list[Position]:
        ...

    @abc.abstractmethod
    async def get_clock(self) -> MarketClock:
        ...

    @abc.abstractmethod
    async def create_order(self, spec: OrderSpec) -> Order:
        """Submit an order; raise on rejection."""

    @abc.abstractmethod
    async def close_position(self, symbol: str) -> Order:
        """Flatten the whole position; raise if nothing was closed."""

    @abc.abstractmethod
    async def get_asset(self, symbol: str) -> Asset | None:
        ...

    @abc.abstractmethod
    async def list_assets(self, *, status: str = "active", asset_class: str = "us_equity") -> list[Asset]:
        ...


class SocialFeedProvider(abc.ABC):
    @abc.abstractmethod
    async def fetch_trending(self, source: str) -> list[str]:
        """Trending symbols on a venue, most active first."""

    @abc.abstractmethod
    async def fetch_recent(self, query: str, source: str, limit: int = 25) -> list[SocialPost]:
        """Recent posts for ``query`` (a symbol, listing name or search string) on ``source``."""


class LLMJudge(abc.ABC):
    @abc.abstractmethod
    async def evaluate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str,
        max_tokens: int,
    ) -> JudgeResponse:
        """Return the raw structured-text answer plus token usage."""


class NotificationSink(abc.ABC):
    @abc.abstractmethod
    async def notify(self, event: Notification) -> None:
        ...


class OptionsDataProvider(abc.ABC):
    @abc.abstractmethod
    async def get_expirations(self, underlying: str) -> list[str]:
        """ISO dates (YYYY-MM-DD)."""

    @abc.abstractmethod
    async def get_chain(self, underlying: str, expiration: str) -> OptionChain | None:
        ...

    @abc.abstractmethod
    async def get_snapshot(self, contract_symbol: str) -> OptionSnapshot | None:
        ...


class CryptoRankingProvider(abc.ABC):
    name: str = "ranking"

    @abc.abstractmethod
    async def top_symbols(self, limit: int) -> list[str]:
        """Base symbols (``BTC``, ``ETH``…) ordered by market-cap rank."""


@dataclass
class Collaborators:
    """Everything the controller talks to. Optional members disable their feature when absent."""

    market_data: MarketDataProvider
    brokerage: BrokerageProvider
    social: SocialFeedProvider
    judge: LLMJudge | None = None
    notifier: NotificationSink | None = None
    options: OptionsDataProvider | None = None
    crypto_ranking: CryptoRankingProvider | None = None
    confirmation_feed: SocialFeedProvider | None = None
