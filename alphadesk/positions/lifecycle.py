"""PositionLifecycleManager: NONE -> HELD -> (EXITING) -> NONE per symbol.

The manager computes exits, staleness and order sizes and talks to the
brokerage, but never writes agent state itself. The controller applies what it
returns, so a failed close leaves every per-symbol record in place.
"""

from __future__ import annotations

import logging

from alphadesk.config import AgentConfig
from alphadesk.errors import OrderRejected, ProviderUnavailable
from alphadesk.models import (
    Account,
    ExitDecision,
    OrderSpec,
    Position,
    PositionEntry,
    Signal,
    SocialHistoryEntry,
    StalenessScore,
)
from alphadesk.providers.base import BrokerageProvider
from alphadesk.signals.eligibility import AssetResolver
from alphadesk.symbols import normalize_crypto_symbol, normalize_symbol
from alphadesk.utils import guarded_call

logger = logging.getLogger(__name__)

HOUR = 3600.0
DAY = 86_400.0

MAX_SIZE_PCT = 20.0
STALE_SCORE_LIMIT = 70.0
TIME_POINTS_MAX = 40.0
TIME_POINTS_MID = 20.0
PRICE_POINTS_MAX = 30.0
PRICE_POINTS_FLAT = 15.0
VOLUME_POINTS_FULL = 30.0
VOLUME_POINTS_HALF = 15.0
VOLUME_HALF_RATIO = 0.5
SOCIAL_HISTORY_LIMIT = 48

REJECTED_STATUSES = frozenset({"rejected", "canceled", "cancelled", "expired"})


def position_pl_pct(position: Position) -> float:
    """Unrealized P&L as a percent of cost basis."""
    basis = position.market_value - position.unrealized_pl
    return position.unrealized_pl / basis * 100 if basis else 0.0


def option_pl_pct(position: Position) -> float:
    entry = position.avg_entry_price or position.current_price
    return (position.current_price - entry) / entry * 100 if entry > 0 else 0.0


# ── social history ────────────────────────────────────────────────────

def append_social_history(
    history: dict[str, list[SocialHistoryEntry]],
    signals: list[Signal],
    now: float,
) -> dict[str, list[SocialHistoryEntry]]:
    """New history with one point per symbol seen this cycle, newest last, bounded."""
    volume: dict[str, float] = {}
    sentiment: dict[str, list[float]] = {}
    for sig in signals:
        symbol = normalize_symbol(sig.symbol)
        volume[symbol] = volume.get(symbol, 0.0) + sig.volume
        sentiment.setdefault(symbol, []).append(sig.sentiment)

    out = {symbol: list(points) for symbol, points in history.items()}
    for symbol, total in volume.items():
        values = sentiment[symbol]
        points = out.setdefault(symbol, [])
        points.append(SocialHistoryEntry(timestamp=now, volume=total, sentiment=sum(values) / len(values)))
        del points[:-SOCIAL_HISTORY_LIMIT]
    return out


def current_social_volume(
    history: dict[str, list[SocialHistoryEntry]],
    symbol: str,
    now: float,
    window_hours: float,
) -> float:
    """Latest volume seen inside the mention window, or 0 when the symbol went quiet."""
    points = history.get(normalize_symbol(symbol)) or []
    for point in reversed(points):
        if now - point.timestamp <= window_hours * HOUR:
            return point.volume
    return 0.0


class PositionLifecycleManager:
    def __init__(
        self,
        config: AgentConfig,
        brokerage: BrokerageProvider,
        resolver: AssetResolver,
        crypto_symbols: list[str],
        timeout: float = 20.0,
    ) -> None:
        self.config = config
        self.brokerage = brokerage
        self.resolver = resolver
        self.crypto_symbols = crypto_symbols
        self.timeout = timeout

    # ── exits ──────────────────────────────────────────────────────────

    def exit_for(self, position: Position, *, crypto: bool = False) -> ExitDecision | None:
        """Take-profit / stop-loss on brokerage P&L, with per-class thresholds."""
        if position.is_option:
            return None
        pnl = position_pl_pct(position)
        take_profit = self.config.crypto_take_profit_pct if crypto else self.config.take_profit_pct
        stop_loss = self.config.crypto_stop_loss_pct if crypto else self.config.stop_loss_pct
        label = "Crypto " if crypto else ""
        if pnl >= take_profit:
            return ExitDecision(
                symbol=position.symbol, kind="take_profit", reason=f"{label}take profit at +{pnl:.1f}%", pnl_pct=pnl
            )
        if pnl <= -stop_loss:
            return ExitDecision(
                symbol=position.symbol, kind="stop_loss", reason=f"{label}stop loss at {pnl:.1f}%", pnl_pct=pnl
            )
        return None

    def option_exit_for(self, position: Position) -> ExitDecision | None:
        if not position.is_option:
            return None
        pnl = option_pl_pct(position)
        if pnl <= -self.config.options_stop_loss_pct:
            return ExitDecision(
                symbol=position.symbol, kind="stop_loss", reason=f"Options stop loss at {pnl:.1f}%", pnl_pct=pnl
            )
        if pnl >= self.config.options_take_profit_pct:
            return ExitDecision(
                symbol=position.symbol, kind="take_profit", reason=f"Options take profit at +{pnl:.1f}%", pnl_pct=pnl
            )
        return None

    # ── staleness ──────────────────────────────────────────────────────

    def staleness(
        self,
        entry: PositionEntry,
        current_price: float,
        current_volume: float,
        now: float,
    ) -> StalenessScore:
        """Score 0-100 from hold time (40), price action (30) and social volume decay (30).

        While the entry price is pending the price component and the
        max-hold minimum-gain rule are skipped.
        """
        cfg = self.config
        hold_hours = max(0.0, now - entry.entry_time) / HOUR
        hold_days = hold_hours / 24
        pnl: float | None = None
        if not entry.price_pending and current_price > 0:
            pnl = (current_price - entry.entry_price) / entry.entry_price * 100
        volume_ratio = current_volume / entry.entry_social_volume if entry.entry_social_volume > 0 else 1.0

        if hold_hours < cfg.stale_min_hold_hours:
            return StalenessScore(
                score=0.0,
                is_stale=False,
                reason=f"Too early ({hold_hours:.1f}h)",
                hold_days=hold_days,
                pnl_pct=pnl,
                volume_ratio=volume_ratio,
            )

        score = 0.0
        if hold_days >= cfg.stale_max_hold_days:
            score += TIME_POINTS_MAX
        elif hold_days >= cfg.stale_mid_hold_days:
            span = cfg.stale_max_hold_days - cfg.stale_mid_hold_days
            score += TIME_POINTS_MID * (hold_days - cfg.stale_mid_hold_days) / span

        if pnl is not None:
            if pnl < 0:
                score += min(PRICE_POINTS_MAX, abs(pnl) * 3)
            elif pnl < cfg.stale_mid_min_gain_pct and hold_days >= cfg.stale_mid_hold_days:
                score += PRICE_POINTS_FLAT

        if volume_ratio <= cfg.stale_social_volume_decay:
            score += VOLUME_POINTS_FULL
        elif volume_ratio <= VOLUME_HALF_RATIO:
            score += VOLUME_POINTS_HALF

        score = min(100.0, score)
        is_stale = score >= STALE_SCORE_LIMIT or (
            pnl is not None and hold_days >= cfg.stale_max_hold_days and pnl < cfg.stale_min_gain_pct
        )
        reason = (
            f"Staleness score {score:.0f}/100, held {hold_days:.1f} days"
            if is_stale
            else f"OK (score {score:.0f}/100)"
        )
        return StalenessScore(
            score=score,
            is_stale=is_stale,
            reason=reason,
            hold_days=hold_days,
            pnl_pct=pnl,
            volume_ratio=volume_ratio,
        )

    # ── entries ────────────────────────────────────────────────────────

    def order_notional(self, cash: float, confidence: float, *, crypto: bool) -> float | None:
        """Cents-rounded buy notional, or None when below the class floor."""
        size_pct = min(MAX_SIZE_PCT, self.config.position_size_pct_of_cash)
        cap = self.config.crypto_max_position_value if crypto else self.config.max_position_value
        floor = self.config.crypto_min_order_notional if crypto else self.config.min_order_notional
        notional = min(cash * size_pct / 100 * confidence, cap)
        if notional < floor:
            return None
        return round(notional, 2)

    @staticmethod
    def new_entry(
        symbol: str,
        signal: Signal | None,
        confidence: float,
        reason: str,
        now: float,
        fallback_source: str,
    ) -> PositionEntry:
        """Entry snapshot at order time; the price fields wait for a backfill."""
        sentiment = signal.sentiment if signal is not None and signal.sentiment else confidence
        if signal is not None:
            sources = list(signal.sources) or [signal.source]
        else:
            sources = [fallback_source]
        return PositionEntry(
            symbol=symbol,
            entry_time=now,
            entry_sentiment=sentiment,
            entry_social_volume=signal.volume if signal is not None else 0.0,
            entry_sources=sources,
            entry_reason=reason,
            peak_sentiment=sentiment,
        )

    @staticmethod
    def observe(entry: PositionEntry, position: Position) -> PositionEntry:
        """Backfill a pending entry price and track the peak; returns the same entry when unchanged."""
        update: dict[str, float] = {}
        if entry.price_pending:
            price = position.avg_entry_price or position.current_price
            if price > 0:
                update["entry_price"] = price
                logger.info("[positions] %s entry price backfilled at %.4f", entry.symbol, price)
        if position.current_price > max(entry.peak_price, update.get("entry_price", 0.0)):
            update["peak_price"] = position.current_price
        return entry.model_copy(update=update) if update else entry

    async def buy(self, symbol: str, confidence: float, account: Account) -> str:
        """Submit a market buy sized from cash and confidence; returns the order symbol.

        Raises ``OrderRejected`` when the order is too small, the asset cannot
        be resolved, or the brokerage refuses it.
        """
        resolved = await self.resolver.resolve(symbol)
        if resolved.asset is None and not resolved.is_crypto:
            raise OrderRejected(symbol, "asset_unavailable")

        notional = self.order_notional(account.cash, confidence, crypto=resolved.is_crypto)
        if notional is None:
            logger.info("[executor] %s buy skipped: position too small", symbol)
            raise OrderRejected(symbol, "position too small")

        order_symbol = (
            normalize_crypto_symbol(resolved.symbol, self.crypto_symbols) if resolved.is_crypto else resolved.symbol
        )
        spec = OrderSpec(
            symbol=order_symbol,
            side="buy",
            type="market",
            time_in_force="gtc" if resolved.is_crypto else "day",
            notional=notional,
        )
        await self.submit(spec)
        logger.info("[executor] buy %s notional=%.2f confidence=%.3f", order_symbol, notional, confidence)
        return order_symbol

    async def submit(self, spec: OrderSpec) -> None:
        try:
            order = await guarded_call(self.brokerage.create_order(spec), self.timeout, f"order/{spec.symbol}")
        except ProviderUnavailable as exc:
            raise OrderRejected(spec.symbol, str(exc)) from exc
        if order.status.lower() in REJECTED_STATUSES:
            raise OrderRejected(spec.symbol, f"status {order.status}")

    # ── closes ─────────────────────────────────────────────────────────

    async def close(self, candidates: list[str], reason: str) -> str | None:
        """Try each spelling in turn; returns the one that closed, or None."""
        last_error = ""
        for candidate in candidates:
            if not candidate:
                continue
            try:
                await guarded_call(self.brokerage.close_position(candidate), self.timeout, f"close/{candidate}")
            except (ProviderUnavailable, OrderRejected) as exc:
                last_error = str(exc)
                continue
            logger.info("[executor] sell %s: %s", candidate, reason)
            return candidate
        logger.warning("[executor] sell %s failed: %s", candidates[0] if candidates else "?", last_error or "no symbol")
        return None
