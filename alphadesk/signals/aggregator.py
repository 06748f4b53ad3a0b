"""Turns raw mentions from every source into one ``Signal`` per symbol per source.

Scoring is pure and clock-free (``now`` is always passed in) so the same
input at the same instant always yields the same signals. ``gather`` is the
only coroutine: it fans out to the collaborators, joins, then scores.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from alphadesk.config import AgentConfig
from alphadesk.errors import ProviderUnavailable
from alphadesk.models import Signal, Snapshot, SocialPost
from alphadesk.providers.base import MarketDataProvider, SocialFeedProvider
from alphadesk.signals.text import extract_tickers, keyword_sentiment
from alphadesk.signals.weighting import (
    engagement_multiplier,
    flair_multiplier,
    mention_quality,
    source_weight,
    time_decay,
)
from alphadesk.symbols import is_stablecoin, normalize_symbol
from alphadesk.utils import clamp, gather_bounded, guarded_call

logger = logging.getLogger(__name__)

CROWD_SUBREDDITS = ("wallstreetbets", "stocks", "investing", "options")
CROWD_MIN_MENTIONS = 2
CROWD_POST_LIMIT = 25

STREAM_SOURCE = "stocktwits"
STREAM_TOP_TRENDING = 15
STREAM_MESSAGE_LIMIT = 30
STREAM_MIN_MESSAGES = 5

CRYPTO_SOURCE_WEIGHT = 0.8


@dataclass
class _TickerTally:
    mentions: int = 0
    raw_sum: float = 0.0
    weighted_sum: float = 0.0
    quality_sum: float = 0.0
    upvotes: int = 0
    comments: int = 0
    sources: dict[str, None] = field(default_factory=dict)
    best_flair: str | None = None
    best_flair_mult: float = 0.0
    freshest: float = 0.0


@dataclass
class GatherResult:
    signals: list[Signal]
    counts: dict[str, int]
    failures: list[str]


class SignalAggregator:
    """Scores mentions into signals for one cycle."""

    def __init__(self, config: AgentConfig) -> None:
        self.config = config

    # ── crowd source (subreddit batches) ──────────────────────────────

    def aggregate_crowd(self, batches: dict[str, list[SocialPost]], now: float) -> list[Signal]:
        """``batches`` maps subreddit name to its posts."""
        tallies: dict[str, _TickerTally] = {}

        for sub, posts in batches.items():
            weight = source_weight(f"reddit_{sub}")
            for post in posts:
                tickers = extract_tickers(post.text)
                if not tickers:
                    continue
                raw = keyword_sentiment(post.text)
                flair_mult = flair_multiplier(post.flair)
                quality = mention_quality(
                    time_decay(post.created_at or now, now),
                    engagement_multiplier(post.upvotes, post.comments),
                    flair_mult,
                    weight,
                )
                for ticker in tickers:
                    t = tallies.setdefault(ticker, _TickerTally())
                    t.mentions += 1
                    t.raw_sum += raw
                    t.weighted_sum += raw * quality
                    t.quality_sum += quality
                    t.upvotes += post.upvotes
                    t.comments += post.comments
                    t.sources.setdefault(sub, None)
                    if flair_mult > t.best_flair_mult:
                        t.best_flair = post.flair
                        t.best_flair_mult = flair_mult
                    if post.created_at > t.freshest:
                        t.freshest = post.created_at

        signals: list[Signal] = []
        for symbol, t in tallies.items():
            if t.mentions < CROWD_MIN_MENTIONS:
                continue
            avg_raw = t.raw_sum / t.mentions
            avg_quality = t.quality_sum / t.mentions
            weighted = t.weighted_sum / t.mentions if t.quality_sum > 0 else avg_raw * 0.5
            subs = list(t.sources)
            signals.append(
                Signal(
                    symbol=symbol,
                    source="reddit",
                    source_detail="reddit_" + "+".join(subs),
                    raw_sentiment=clamp(avg_raw, -1.0, 1.0),
                    sentiment=clamp(weighted, -1.0, 1.0),
                    volume=t.mentions,
                    freshness=time_decay(t.freshest or now, now),
                    source_weight=avg_quality,
                    upvotes=t.upvotes,
                    comments=t.comments,
                    sources=subs,
                    best_flair=t.best_flair,
                    reason=(
                        f"Reddit({','.join(subs)}): {t.mentions} mentions, "
                        f"{t.upvotes} upvotes, quality:{avg_quality * 100:.0f}%"
                    ),
                )
            )
        return signals

    # ── labeled stream source ─────────────────────────────────────────

    def aggregate_stream(self, symbol: str, messages: list[SocialPost], now: float) -> Signal | None:
        total = len(messages)
        if total < STREAM_MIN_MESSAGES:
            return None
        bullish = bearish = decay_sum = 0.0
        for msg in messages:
            decay = time_decay(msg.created_at or now, now)
            decay_sum += decay
            label = (msg.label or "").strip().lower()
            if label == "bullish":
                bullish += decay
            elif label == "bearish":
                bearish += decay

        score = (bullish - bearish) / (decay_sum or 1.0)
        freshness = decay_sum / total
        weight = source_weight(STREAM_SOURCE)
        return Signal(
            symbol=normalize_symbol(symbol),
            source=STREAM_SOURCE,
            source_detail=f"{STREAM_SOURCE}_trending",
            raw_sentiment=clamp(score, -1.0, 1.0),
            sentiment=clamp(score * weight * freshness, -1.0, 1.0),
            volume=total,
            freshness=clamp(freshness, 0.0, 1.0),
            source_weight=weight,
            bullish=round(bullish),
            bearish=round(bearish),
            sources=[STREAM_SOURCE],
            reason=(
                f"StockTwits: {round(bullish)}B/{round(bearish)}b ({score * 100:.0f}%) "
                f"[fresh:{freshness * 100:.0f}%]"
            ),
        )

    # ── crypto momentum (no mention gate) ─────────────────────────────

    def crypto_momentum_signal(self, symbol: str, snapshot: Snapshot) -> Signal | None:
        price = snapshot.latest_trade.price if snapshot.latest_trade else 0.0
        prev_close = snapshot.prev_daily_bar.close if snapshot.prev_daily_bar else 0.0
        if not price or not prev_close:
            return None

        momentum = (price - prev_close) / prev_close * 100
        threshold = self.config.crypto_momentum_threshold
        bullish = momentum > 0
        if abs(momentum) >= threshold and bullish:
            raw = min(abs(momentum) / 5, 1.0)
        else:
            raw = 0.1
        return Signal(
            symbol=normalize_symbol(symbol),
            source="crypto",
            source_detail="crypto_momentum",
            raw_sentiment=raw,
            sentiment=raw,
            volume=snapshot.daily_bar.volume if snapshot.daily_bar else 0.0,
            freshness=1.0,
            source_weight=CRYPTO_SOURCE_WEIGHT,
            is_crypto=True,
            momentum=momentum,
            price=price,
            bullish=1 if bullish else 0,
            bearish=0 if bullish else 1,
            sources=["crypto"],
            reason=f"Crypto: {momentum:+.2f}% (24h)",
        )

    # ── manual watchlist (no mention gate) ────────────────────────────

    def watchlist_signals(self) -> list[Signal]:
        base = max(0.05, self.config.min_sentiment_score * 0.75)
        return [
            Signal(
                symbol=symbol,
                source="manual",
                source_detail="manual_watchlist",
                raw_sentiment=base,
                sentiment=base,
                volume=0,
                freshness=1.0,
                source_weight=1.0,
                sources=["manual"],
                reason="Manual watchlist entry",
            )
            for symbol in self.config.stock_watchlist_symbols
        ]

    # ── I/O fan-out ───────────────────────────────────────────────────

    async def gather(
        self,
        social: SocialFeedProvider,
        market_data: MarketDataProvider,
        *,
        scan_equities: bool,
        crypto_symbols: list[str],
        now: float,
        timeout: float,
    ) -> GatherResult:
        """Fetch every enabled source concurrently, then score.

        A source that fails contributes nothing this cycle; the others proceed.
        """
        failures: list[str] = []

        async def _noop() -> list[Signal]:
            return []

        crowd_task = self._gather_crowd(social, now, timeout, failures) if scan_equities else _noop()
        stream_task = self._gather_stream(social, now, timeout, failures) if scan_equities else _noop()
        crypto_task = (
            self._gather_crypto(market_data, crypto_symbols, timeout, failures)
            if self.config.crypto_enabled
            else _noop()
        )
        stream, crowd, crypto = await asyncio.gather(stream_task, crowd_task, crypto_task)
        manual = self.watchlist_signals()

        return GatherResult(
            signals=[*stream, *crowd, *crypto, *manual],
            counts={
                "stocktwits": len(stream),
                "reddit": len(crowd),
                "crypto": len(crypto),
                "manual": len(manual),
            },
            failures=failures,
        )

    async def _gather_crowd(
        self, social: SocialFeedProvider, now: float, timeout: float, failures: list[str]
    ) -> list[Signal]:
        async def _one(sub: str) -> list[SocialPost]:
            return await guarded_call(
                social.fetch_recent(sub, "reddit", limit=CROWD_POST_LIMIT), timeout, f"reddit/{sub}"
            )

        results = await gather_bounded(list(CROWD_SUBREDDITS), _one, concurrency=4)
        batches: dict[str, list[SocialPost]] = {}
        for sub, result in zip(CROWD_SUBREDDITS, results):
            if isinstance(result, BaseException):
                self._note_failure(failures, f"reddit/{sub}", result)
                continue
            batches[sub] = result
        return self.aggregate_crowd(batches, now)

    async def _gather_stream(
        self, social: SocialFeedProvider, now: float, timeout: float, failures: list[str]
    ) -> list[Signal]:
        try:
            trending = await guarded_call(social.fetch_trending(STREAM_SOURCE), timeout, "stocktwits/trending")
        except ProviderUnavailable as exc:
            self._note_failure(failures, "stocktwits/trending", exc)
            return []

        symbols = [normalize_symbol(s) for s in trending[:STREAM_TOP_TRENDING] if s and s.strip()]

        async def _one(symbol: str) -> list[SocialPost]:
            return await guarded_call(
                social.fetch_recent(symbol, STREAM_SOURCE, limit=STREAM_MESSAGE_LIMIT),
                timeout,
                f"stocktwits/{symbol}",
            )

        results = await gather_bounded(symbols, _one, concurrency=4)
        signals: list[Signal] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                self._note_failure(failures, f"stocktwits/{symbol}", result)
                continue
            sig = self.aggregate_stream(symbol, result, now)
            if sig is not None:
                signals.append(sig)
        return signals

    async def _gather_crypto(
        self,
        market_data: MarketDataProvider,
        crypto_symbols: list[str],
        timeout: float,
        failures: list[str],
    ) -> list[Signal]:
        symbols = [s for s in crypto_symbols if not is_stablecoin(s)]
        excluded = len(crypto_symbols) - len(symbols)

        async def _one(symbol: str) -> Snapshot | None:
            return await guarded_call(market_data.get_snapshot(symbol), timeout, f"crypto/{symbol}")

        results = await gather_bounded(symbols, _one, concurrency=8)
        signals: list[Signal] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                self._note_failure(failures, f"crypto/{symbol}", result)
                continue
            if result is None:
                continue
            sig = self.crypto_momentum_signal(symbol, result)
            if sig is not None:
                signals.append(sig)
        logger.info("[crypto] gathered %d signals (stablecoin_excluded=%d)", len(signals), excluded)
        return signals

    @staticmethod
    def _note_failure(failures: list[str], what: str, exc: BaseException) -> None:
        if not isinstance(exc, Exception):
            raise exc
        failures.append(what)
        logger.warning("[signals] %s failed: %s", what, exc)
