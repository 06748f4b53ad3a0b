"""Asset-eligibility filter applied to a cycle's merged signals before caching."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from alphadesk.errors import AssetIneligible, ProviderUnavailable
from alphadesk.models import Asset, Signal
from alphadesk.providers.base import BrokerageProvider
from alphadesk.symbols import (
    build_crypto_symbol_map,
    crypto_base_symbol,
    crypto_symbol_key,
    normalize_crypto_symbol,
    normalize_symbol,
    to_slash_usd_symbol,
)
from alphadesk.utils import guarded_call

logger = logging.getLogger(__name__)


@dataclass
class ResolvedAsset:
    symbol: str
    is_crypto: bool
    asset: Asset | None


class AssetResolver:
    """Maps a free-form symbol onto the brokerage's spelling and asset class."""

    def __init__(self, brokerage: BrokerageProvider, crypto_symbols: list[str], timeout: float) -> None:
        self.brokerage = brokerage
        self.crypto_symbols = crypto_symbols
        self.timeout = timeout

    async def _lookup(self, symbol: str) -> Asset | None:
        try:
            return await guarded_call(self.brokerage.get_asset(symbol), self.timeout, f"asset/{symbol}")
        except ProviderUnavailable as exc:
            logger.debug("[assets] lookup %s failed: %s", symbol, exc)
            return None

    async def _lookup_crypto(self, slash_symbol: str) -> ResolvedAsset:
        asset = await self._lookup(slash_symbol)
        if asset is None:
            asset = await self._lookup(slash_symbol.replace("/", ""))
        if asset is not None and asset.asset_class == "crypto":
            return ResolvedAsset(normalize_symbol(asset.symbol), True, asset)
        return ResolvedAsset(slash_symbol, True, asset)

    async def resolve(self, symbol: str) -> ResolvedAsset:
        normalized = normalize_symbol(symbol)
        if "/" in normalized:
            return await self._lookup_crypto(normalized)

        mapped = build_crypto_symbol_map(self.crypto_symbols).get(normalized)
        if mapped:
            return await self._lookup_crypto(mapped)

        asset = await self._lookup(normalized)
        if asset is not None:
            return ResolvedAsset(normalize_symbol(asset.symbol), asset.asset_class == "crypto", asset)

        slash = to_slash_usd_symbol(normalized)
        if slash and slash != normalized:
            asset = await self._lookup(slash)
            if asset is not None and asset.asset_class == "crypto":
                return ResolvedAsset(normalize_symbol(asset.symbol), True, asset)

        return ResolvedAsset(normalized, False, None)


class EligibilityFilter:
    """Drops signals for untradable, disallowed-exchange, or out-of-universe assets.

    Decisions are memoized per compact symbol for the duration of one filter call.
    """

    def __init__(
        self,
        resolver: AssetResolver,
        active_crypto_symbols: list[str],
        allowed_exchanges: list[str] | None,
    ) -> None:
        self.resolver = resolver
        self.active_crypto_symbols = active_crypto_symbols
        self.allowed_exchanges = {e.upper() for e in allowed_exchanges} if allowed_exchanges else None
        self._crypto_allow: set[str] = set()
        for sym in active_crypto_symbols:
            self._crypto_allow.add(crypto_symbol_key(sym))
            self._crypto_allow.add(crypto_base_symbol(sym))

    def _in_crypto_universe(self, symbol: str) -> bool:
        return crypto_symbol_key(symbol) in self._crypto_allow or crypto_base_symbol(symbol) in self._crypto_allow

    async def check(self, signal: Signal) -> Signal:
        """Return the signal re-keyed to the tradable symbol, or raise ``AssetIneligible``."""
        resolved = await self.resolver.resolve(signal.symbol)
        if resolved.is_crypto:
            canonical = normalize_crypto_symbol(resolved.symbol, self.active_crypto_symbols)
            if not self._in_crypto_universe(canonical):
                raise AssetIneligible(resolved.symbol, "crypto_not_allowed")
        if resolved.asset is None:
            raise AssetIneligible(resolved.symbol, "asset_unavailable")
        if not resolved.asset.tradable:
            raise AssetIneligible(resolved.symbol, f"asset_not_tradable (status={resolved.asset.status})")
        if (
            self.allowed_exchanges is not None
            and not resolved.is_crypto
            and resolved.asset.exchange.upper() not in self.allowed_exchanges
        ):
            raise AssetIneligible(resolved.symbol, f"asset_exchange_blocked ({resolved.asset.exchange})")
        return signal.model_copy(
            update={
                "symbol": normalize_symbol(resolved.asset.symbol),
                "is_crypto": signal.is_crypto or resolved.is_crypto,
            }
        )

    async def filter(self, signals: list[Signal]) -> list[Signal]:
        kept: list[Signal] = []
        decisions: dict[str, tuple[str, bool] | None] = {}

        for signal in signals:
            if self._in_crypto_universe(signal.symbol):
                kept.append(
                    signal.model_copy(
                        update={
                            "symbol": normalize_crypto_symbol(signal.symbol, self.active_crypto_symbols),
                            "is_crypto": True,
                        }
                    )
                )
                continue
            if signal.is_crypto:
                logger.info("[signal_filter] %s dropped: crypto_not_allowed", signal.symbol)
                continue

            key = crypto_symbol_key(signal.symbol)
            if key in decisions:
                decision = decisions[key]
                if decision is not None:
                    kept.append(signal.model_copy(update={"symbol": decision[0], "is_crypto": decision[1]}))
                continue

            try:
                checked = await self.check(signal)
            except AssetIneligible as exc:
                logger.info("[signal_filter] %s dropped: %s", exc.symbol, exc.reason)
                decisions[key] = None
                continue
            decisions[key] = (checked.symbol, checked.is_crypto)
            kept.append(checked)

        dropped = len(signals) - len(kept)
        if dropped:
            logger.info("[signal_filter] kept %d of %d signals", len(kept), len(signals))
        return kept
