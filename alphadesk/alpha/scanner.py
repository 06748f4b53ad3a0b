"""AlphaScanner: rank cached signals by statistical edge against market data."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from alphadesk.alpha.probability import (
    AVG_ABS_RETURN_FLOOR,
    alpha_confidence,
    avg_abs_return,
    crypto_calculated_probability,
    edge_threshold,
    equity_calculated_probability,
    implied_probability,
    up_days_probability,
)
from alphadesk.config import AgentConfig
from alphadesk.models import AggregatedMarket, AlphaCandidate, AlphaScanState, Bar, Signal, Snapshot
from alphadesk.providers.base import MarketDataProvider
from alphadesk.symbols import normalize_symbol
from alphadesk.utils import gather_bounded, guarded_call

logger = logging.getLogger(__name__)

SNAPSHOT_CHUNK_SIZE = 100
EDGE_CANDIDATES_LIMIT = 25
TOP_ALPHA_LIMIT = 10
CRYPTO_MIN_EDGE_CAP = 0.01
CRYPTO_THRESHOLD_CAP = 0.03


@dataclass
class Liquidity:
    price: float
    notional: float
    spread_pct: float | None


def measure_liquidity(snapshot: Snapshot) -> Liquidity:
    price = (snapshot.latest_trade.price if snapshot.latest_trade else 0.0) or (
        snapshot.daily_bar.close if snapshot.daily_bar else 0.0
    )
    volume = snapshot.daily_bar.volume if snapshot.daily_bar else 0.0
    spread: float | None = None
    quote = snapshot.latest_quote
    if quote and quote.bid_price > 0 and quote.ask_price > 0:
        mid = (quote.bid_price + quote.ask_price) / 2
        spread = (quote.ask_price - quote.bid_price) / mid
    return Liquidity(price=price, notional=price * volume, spread_pct=spread)


class AlphaScanner:
    def __init__(self, config: AgentConfig, market_data: MarketDataProvider, timeout: float = 20.0) -> None:
        self.config = config
        self.market_data = market_data
        self.timeout = timeout

    # ── thresholds ─────────────────────────────────────────────────────

    def min_edge_for(self, is_crypto: bool) -> float:
        edge = self.config.alpha_min_edge
        return min(edge, CRYPTO_MIN_EDGE_CAP) if is_crypto else edge

    def threshold_for(self, is_crypto: bool) -> float:
        return edge_threshold(self.config.alpha_edge_threshold, is_crypto, CRYPTO_THRESHOLD_CAP)

    def confidence(self, candidate: AlphaCandidate) -> float:
        return alpha_confidence(candidate.alpha, self.threshold_for(candidate.is_crypto))

    # ── pure stages ────────────────────────────────────────────────────

    def aggregate(self, signals: list[Signal]) -> list[AggregatedMarket]:
        """Per-symbol mean sentiment/momentum, strongest sentiment first, capped."""
        sums: dict[str, list[float]] = {}
        crypto: dict[str, bool] = {}
        for sig in signals:
            symbol = normalize_symbol(sig.symbol)
            acc = sums.setdefault(symbol, [0.0, 0, 0.0, 0])
            crypto.setdefault(symbol, sig.is_crypto)
            acc[0] += sig.sentiment
            acc[1] += 1
            if sig.momentum is not None:
                acc[2] += sig.momentum
                acc[3] += 1

        markets = [
            AggregatedMarket(
                symbol=symbol,
                is_crypto=crypto[symbol],
                sentiment_avg=acc[0] / acc[1],
                momentum_avg=acc[2] / acc[3] if acc[3] else None,
            )
            for symbol, acc in sums.items()
        ]
        markets.sort(key=lambda m: m.sentiment_avg, reverse=True)
        return markets[: self.config.alpha_scan_max_markets]

    def passes_liquidity(self, liquidity: Liquidity) -> tuple[bool, bool]:
        """(volume ok, spread ok)."""
        volume_ok = liquidity.notional >= self.config.alpha_min_notional_volume
        spread_ok = (
            volume_ok
            and liquidity.spread_pct is not None
            and liquidity.spread_pct <= self.config.alpha_max_spread_pct
        )
        return volume_ok, spread_ok

    def score(
        self,
        market: AggregatedMarket,
        snapshot: Snapshot,
        liquidity: Liquidity,
        bars: list[Bar] | None,
    ) -> AlphaCandidate | None:
        """Alpha for one liquid market, or None below the minimum edge."""
        if market.is_crypto:
            implied = 0.5
            calculated = crypto_calculated_probability(market.sentiment_avg, market.momentum_avg)
        else:
            prev_close = snapshot.prev_daily_bar.close if snapshot.prev_daily_bar else 0.0
            close = snapshot.daily_bar.close if snapshot.daily_bar else 0.0
            daily_return = (close - prev_close) / prev_close if prev_close else 0.0
            avg_abs = max(abs(daily_return), AVG_ABS_RETURN_FLOOR)
            up_days = None
            if bars:
                bar_avg = avg_abs_return(bars)
                if bar_avg is not None:
                    avg_abs = bar_avg
                up_days = up_days_probability(bars)
            implied = implied_probability(daily_return, avg_abs)
            calculated = equity_calculated_probability(market.sentiment_avg, up_days)

        alpha = calculated - implied
        if abs(alpha) < self.min_edge_for(market.is_crypto):
            return None
        return AlphaCandidate(
            symbol=market.symbol,
            is_crypto=market.is_crypto,
            notional_volume=liquidity.notional,
            spread_pct=liquidity.spread_pct,
            implied_prob=implied,
            calculated_prob=calculated,
            alpha=alpha,
        )

    def rank(self, edge_pass: list[AlphaCandidate]) -> tuple[list[AlphaCandidate], list[AlphaCandidate]]:
        """(edge candidates, top alpha). Top alpha only holds positive edges above threshold."""
        ordered = sorted(edge_pass, key=lambda c: c.alpha, reverse=True)
        edge_candidates = [c for c in ordered if c.alpha > 0][:EDGE_CANDIDATES_LIMIT]
        top_alpha = [
            c for c in ordered if c.alpha > 0 and c.alpha >= self.threshold_for(c.is_crypto)
        ][:TOP_ALPHA_LIMIT]
        return edge_candidates, top_alpha

    # ── scan ───────────────────────────────────────────────────────────

    def is_due(self, previous: AlphaScanState, now: float) -> bool:
        if not previous.updated_at:
            return True
        return now - previous.updated_at >= self.config.alpha_scan_interval_seconds

    async def scan(self, signals: list[Signal], previous: AlphaScanState, now: float) -> AlphaScanState:
        """A fresh scan state, or ``previous`` unchanged when disabled or not yet due."""
        if not self.config.alpha_scan_enabled or not self.is_due(previous, now):
            return previous

        markets = self.aggregate(signals)
        if not markets:
            return AlphaScanState(updated_at=now)

        snapshots = await self._fetch_snapshots(markets)

        volume_pass = 0
        liquid: list[tuple[AggregatedMarket, Snapshot, Liquidity]] = []
        for market in markets:
            snapshot = snapshots.get(market.symbol)
            if snapshot is None:
                continue
            liquidity = measure_liquidity(snapshot)
            volume_ok, spread_ok = self.passes_liquidity(liquidity)
            if volume_ok:
                volume_pass += 1
            if spread_ok:
                liquid.append((market, snapshot, liquidity))

        bars = await self._fetch_bars([m.symbol for m, _, _ in liquid if not m.is_crypto])

        edge_pass: list[AlphaCandidate] = []
        for market, snapshot, liquidity in liquid:
            candidate = self.score(market, snapshot, liquidity, bars.get(market.symbol))
            if candidate is not None:
                edge_pass.append(candidate)

        edge_candidates, top_alpha = self.rank(edge_pass)
        for c in top_alpha:
            logger.info(
                "[alpha] top alpha %s alpha=%.4f implied=%.3f calculated=%.3f",
                c.symbol,
                c.alpha,
                c.implied_prob,
                c.calculated_prob,
            )

        state = AlphaScanState(
            updated_at=now,
            total=len(markets),
            volume_pass=volume_pass,
            liquidity_pass=len(liquid),
            edge_pass=len(edge_pass),
            edge_candidates=edge_candidates,
            top_alpha=top_alpha,
        )
        logger.info(
            "[alpha] scan complete total=%d volume_pass=%d liquidity_pass=%d edge_pass=%d "
            "edge_candidates=%d top_alpha=%d",
            state.total,
            state.volume_pass,
            state.liquidity_pass,
            state.edge_pass,
            len(edge_candidates),
            len(top_alpha),
        )
        return state

    async def _fetch_snapshots(self, markets: list[AggregatedMarket]) -> dict[str, Snapshot]:
        equities = [m.symbol for m in markets if not m.is_crypto]
        cryptos = [m.symbol for m in markets if m.is_crypto]
        chunks = [equities[i : i + SNAPSHOT_CHUNK_SIZE] for i in range(0, len(equities), SNAPSHOT_CHUNK_SIZE)]

        async def _chunk(chunk: list[str]) -> dict[str, Snapshot]:
            return await guarded_call(self.market_data.get_snapshots(chunk), self.timeout, "snapshots")

        async def _one(symbol: str) -> Snapshot | None:
            return await guarded_call(self.market_data.get_snapshot(symbol), self.timeout, f"snapshot/{symbol}")

        out: dict[str, Snapshot] = {}
        for chunk, result in zip(chunks, await gather_bounded(chunks, _chunk, concurrency=4)):
            if isinstance(result, Exception):
                logger.warning("[alpha] snapshot batch of %d failed: %s", len(chunk), result)
                continue
            if isinstance(result, BaseException):
                raise result
            for symbol, snap in result.items():
                out[normalize_symbol(symbol)] = snap
        for symbol, result in zip(cryptos, await gather_bounded(cryptos, _one, concurrency=8)):
            if isinstance(result, Exception):
                logger.warning("[alpha] snapshot %s failed: %s", symbol, result)
                continue
            if isinstance(result, BaseException):
                raise result
            if result is not None:
                out[normalize_symbol(symbol)] = result
        return out

    async def _fetch_bars(self, symbols: list[str]) -> dict[str, list[Bar]]:
        lookback = self.config.alpha_bars_lookback

        async def _one(symbol: str) -> list[Bar]:
            return await guarded_call(self.market_data.get_bars(symbol, "1Day", lookback), self.timeout, f"bars/{symbol}")

        out: dict[str, list[Bar]] = {}
        for symbol, result in zip(symbols, await gather_bounded(symbols, _one, concurrency=8)):
            if isinstance(result, Exception):
                logger.warning("[alpha] bars %s failed: %s", symbol, result)
                continue
            if isinstance(result, BaseException):
                raise result
            out[symbol] = result
        return out
