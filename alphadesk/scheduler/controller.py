"""PhaseController: the single writer of agent state.

One ``wake`` runs every step in a fixed order. Each step is isolated: an
exception is logged and the next step still runs. State is committed once at
the end of the wake and the next wake is always scheduled, even after a
cycle in which every step failed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from alphadesk.alpha.scanner import AlphaScanner
from alphadesk.config import Settings, get_settings, merge_config
from alphadesk.decision.composer import ConfidenceComposer
from alphadesk.errors import OrderRejected, ProviderUnavailable, RateBudgetExhausted
from alphadesk.llm_client import estimate_cost_usd
from alphadesk.models import (
    Account,
    AlphaCandidate,
    ConfirmationResult,
    CryptoUniverse,
    JudgeResponse,
    MarketClock,
    Notification,
    Position,
    PremarketPlan,
    ResearchVerdict,
    Signal,
    Unparseable,
)
from alphadesk.positions.lifecycle import (
    PositionLifecycleManager,
    append_social_history,
    current_social_volume,
)
from alphadesk.notify import CooldownNotifier
from alphadesk.positions.options import OptionsPlanner
from alphadesk.providers.base import Collaborators
from alphadesk.research.confirmation import (
    CONFIRMATION_SAMPLE,
    CONFIRMATION_SOURCE,
    NEWS_SAMPLE,
    NEWS_SYMBOLS,
    breaking_news_query,
    confirmation_query,
    detect_breaking_news,
    score_confirmation,
)
from alphadesk.research.judge import JudgeSession, analyst_candidates
from alphadesk.scheduler.phase import MarketPhase, market_phase
from alphadesk.scheduler.state import AgentState, StateStore
from alphadesk.signals.aggregator import SignalAggregator
from alphadesk.signals.eligibility import AssetResolver, EligibilityFilter
from alphadesk.symbols import (
    crypto_base_symbol,
    crypto_symbol_key,
    held_symbol_keys,
    is_stablecoin,
    normalize_crypto_symbol,
    normalize_symbol,
    symbol_variants,
)
from alphadesk.utils import guarded_call, now_ts

logger = logging.getLogger(__name__)

RESEARCH_LIMIT = 5
PREMARKET_RESEARCH_LIMIT = 10
RESEARCHED_BUYS_PER_PASS = 3
PLAN_STALE_SECONDS = 600.0
UNIVERSE_MIN_REFRESH_SECONDS = 120.0
MAX_CRYPTO_POSITIONS = 3
MOMENTUM_FALLBACK_FLOOR = 0.25
ENTRY_GRACE_SECONDS = 3600.0


@dataclass
class WakeContext:
    """Per-wake components, rebuilt from the current config every wake."""

    now: float
    phase: MarketPhase
    crypto_symbols: list[str]
    resolver: AssetResolver
    aggregator: SignalAggregator
    scanner: AlphaScanner
    composer: ConfidenceComposer
    lifecycle: PositionLifecycleManager
    judge: JudgeSession | None
    options: OptionsPlanner | None


class PhaseController:
    def __init__(
        self,
        collaborators: Collaborators,
        store: StateStore,
        settings: Settings | None = None,
        clock: Callable[[], float] = now_ts,
    ) -> None:
        self.collab = collaborators
        self.store = store
        self.settings = settings or get_settings()
        self.timeout = self.settings.call_timeout_seconds
        self.wake_interval = self.settings.wake_interval_seconds
        self._clock = clock
        self.state: AgentState | None = None

    # ── lifecycle ──────────────────────────────────────────────────────

    async def load(self) -> AgentState:
        if self.state is None:
            self.state = await self.store.load()
            logger.info(
                "[controller] state loaded enabled=%s entries=%d signals=%d",
                self.state.enabled,
                len(self.state.position_entries),
                len(self.state.signal_cache),
            )
        return self.state

    async def run(self, once: bool = False) -> None:
        """Wake forever (or once), sleeping a fixed interval between wakes."""
        while True:
            try:
                await self.wake()
            except Exception:
                logger.exception("[controller] wake failed")
            if once:
                return
            await asyncio.sleep(self.wake_interval)

    async def wake(self) -> None:
        state = await self.load()
        if not state.enabled:
            logger.info("[controller] wake skipped: agent not enabled")
            return

        now = self._clock()
        state.sync_config()
        if isinstance(self.collab.notifier, CooldownNotifier):
            self.collab.notifier.cooldown_seconds = state.config.notification_cooldown_seconds

        clock = await self._step("clock", self._read_clock)
        phase = market_phase(clock or MarketClock(), now, state.config.crypto_enabled)
        logger.info("[controller] wake phase=%s crypto=%s", phase.name, phase.crypto_active)

        if phase.crypto_active:
            await self._step("crypto_universe", self._refresh_crypto_universe, now)

        ctx = self._context(now, phase)

        if now - state.last_data_gather >= state.config.data_poll_interval_seconds:
            if phase.scan_equities or phase.crypto_active:
                await self._step("gather", self._gather, ctx)
                await self._step("alpha_scan", self._alpha_scan, ctx)
            state.last_data_gather = now

        if now - state.last_research >= state.config.research_interval_seconds:
            if phase.scan_equities:
                await self._step("research", self._research_top_signals, ctx, RESEARCH_LIMIT)
            else:
                logger.info("[research] skipped: equities market closed")
            state.last_research = now

        if phase.premarket and state.premarket_plan is None:
            await self._step("premarket_plan", self._build_premarket_plan, ctx)

        if state.config.crypto_enabled:
            await self._step("crypto", self._crypto_pass, ctx)

        if phase.market_open:
            if phase.just_opened and state.premarket_plan is not None:
                await self._step("premarket_execute", self._execute_premarket_plan, ctx)

            if now - state.last_analyst >= state.config.analyst_interval_seconds:
                await self._step("analyst", self._analyst_pass, ctx)
                state.last_analyst = now

            if now - state.last_position_research >= state.config.position_research_interval_seconds:
                await self._step("position_research", self._position_research, ctx)
                state.last_position_research = now

            if state.config.options_enabled:
                await self._step("options_exits", self._options_exits, ctx)

            if self._confirmation_enabled():
                await self._step("breaking_news", self._breaking_news, ctx)

        state.prune(now)
        await self._step("commit", self.store.save, state)

    async def _step(self, name: str, fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        try:
            return await fn(*args)
        except Exception:
            logger.exception("[controller] step %s failed", name)
            return None

    def _context(self, now: float, phase: MarketPhase) -> WakeContext:
        state = self._require_state()
        config = state.config
        crypto_symbols = state.active_crypto_symbols()
        resolver = AssetResolver(self.collab.brokerage, crypto_symbols, self.timeout)
        judge = JudgeSession(self.collab.judge, config, self.timeout) if self.collab.judge is not None else None
        options = None
        if config.options_enabled and self.collab.options is not None:
            options = OptionsPlanner(config, self.collab.options, self.collab.market_data, self.timeout)
        return WakeContext(
            now=now,
            phase=phase,
            crypto_symbols=crypto_symbols,
            resolver=resolver,
            aggregator=SignalAggregator(config),
            scanner=AlphaScanner(config, self.collab.market_data, self.timeout),
            composer=ConfidenceComposer(config),
            lifecycle=PositionLifecycleManager(config, self.collab.brokerage, resolver, crypto_symbols, self.timeout),
            judge=judge,
            options=options,
        )

    def _require_state(self) -> AgentState:
        if self.state is None:
            raise RuntimeError("state not loaded")
        return self.state

    # ── collaborator reads ─────────────────────────────────────────────

    async def _read_clock(self) -> MarketClock:
        return await guarded_call(self.collab.brokerage.get_clock(), self.timeout, "clock")

    async def _account(self) -> Account:
        return await guarded_call(self.collab.brokerage.get_account(), self.timeout, "account")

    async def _positions(self, ctx: WakeContext) -> list[Position]:
        positions = await guarded_call(self.collab.brokerage.get_positions(), self.timeout, "positions")
        self._sync_entries(positions, ctx.now)
        return positions

    def _sync_entries(self, positions: list[Position], now: float) -> None:
        """Backfill entry prices, track peaks, and forget entries for positions closed elsewhere."""
        state = self._require_state()
        seen: set[str] = set()
        for pos in positions:
            key = self._entry_key(pos.symbol)
            if key is None:
                continue
            seen.add(key)
            entry = state.position_entries[key]
            updated = PositionLifecycleManager.observe(entry, pos)
            if updated is not entry:
                state.position_entries[key] = updated
        for key, entry in list(state.position_entries.items()):
            if key not in seen and now - entry.entry_time > ENTRY_GRACE_SECONDS:
                logger.info("[positions] %s no longer held, dropping entry", key)
                state.forget([key])

    @staticmethod
    def _is_crypto_position(ctx: WakeContext, pos: Position) -> bool:
        if pos.is_crypto or "/" in pos.symbol:
            return True
        return crypto_symbol_key(pos.symbol) in {crypto_symbol_key(s) for s in ctx.crypto_symbols}

    def _entry_key(self, symbol: str) -> str | None:
        entries = self._require_state().position_entries
        return next((v for v in symbol_variants(symbol) if v in entries), None)

    # ── bookkeeping ────────────────────────────────────────────────────

    def _record_usage(self, usage: JudgeResponse) -> None:
        cost = estimate_cost_usd(usage.model, usage.tokens_in, usage.tokens_out)
        self._require_state().cost_tracker.add(cost, usage.tokens_in, usage.tokens_out)

    def _confirmation_enabled(self) -> bool:
        return self.settings.social_confirmation_enabled and self.collab.confirmation_feed is not None

    async def _notify(self, event: Notification) -> None:
        if self.collab.notifier is None:
            return
        try:
            await guarded_call(self.collab.notifier.notify(event), self.timeout, "notify")
        except ProviderUnavailable as exc:
            logger.warning("[notify] %s dropped: %s", event.symbol, exc)

    def _open_entry(self, symbol: str, signal: Signal | None, confidence: float, reason: str, now: float, source: str) -> None:
        state = self._require_state()
        key = normalize_symbol(symbol)
        state.position_entries[key] = PositionLifecycleManager.new_entry(key, signal, confidence, reason, now, source)

    async def _close(self, ctx: WakeContext, symbol: str, reason: str, extra: list[str] | None = None) -> bool:
        """Close under any spelling; per-symbol state is dropped only when the close succeeds."""
        candidates = list(dict.fromkeys([*symbol_variants(symbol), *(normalize_symbol(s) for s in extra or [])]))
        closed = await ctx.lifecycle.close(candidates, reason)
        if closed is None:
            return False
        self._require_state().forget(candidates)
        await self._notify(Notification(kind="trade", symbol=closed, title=f"SELL {closed}", details={"reason": reason}))
        return True

    async def _buy(
        self,
        ctx: WakeContext,
        symbol: str,
        confidence: float,
        account: Account,
        reason: str,
        source: str,
    ) -> str | None:
        try:
            order_symbol = await ctx.lifecycle.buy(symbol, confidence, account)
        except OrderRejected as exc:
            logger.warning("[executor] buy %s rejected: %s", symbol, exc.reason)
            return None
        self._open_entry(order_symbol, self._require_state().first_signal(symbol), confidence, reason, ctx.now, source)
        await self._notify(
            Notification(
                kind="trade",
                symbol=order_symbol,
                title=f"BUY {order_symbol}",
                details={"confidence": confidence, "reason": reason},
            )
        )
        return order_symbol

    # ── crypto universe ────────────────────────────────────────────────

    async def _refresh_crypto_universe(self, now: float) -> None:
        state = self._require_state()
        config = state.config
        ranking = self.collab.crypto_ranking
        if ranking is None or config.crypto_universe_top_n <= 0:
            return
        refresh = max(UNIVERSE_MIN_REFRESH_SECONDS, config.crypto_universe_refresh_seconds)
        updated = state.crypto_universe.updated_at
        if updated and now - updated < refresh:
            return

        top_n = config.crypto_universe_top_n
        ranked = await guarded_call(ranking.top_symbols(top_n), self.timeout, f"crypto_ranking/{ranking.name}")
        market_symbols = list(dict.fromkeys(normalize_symbol(s) for s in ranked if s and s.strip()))[:top_n]
        if not market_symbols:
            logger.warning("[crypto] universe empty from %s", ranking.name)
            return

        assets = await guarded_call(
            self.collab.brokerage.list_assets(status="active", asset_class="crypto"),
            self.timeout,
            "assets/crypto",
        )
        tradable: dict[str, str] = {}
        for asset in assets:
            if not asset.tradable or asset.status != "active" or asset.asset_class != "crypto":
                continue
            symbol = normalize_symbol(asset.symbol)
            if "/" in symbol:
                base, _, quote = symbol.partition("/")
                if not base or quote != "USD":
                    continue
            elif not (symbol.endswith("USD") and len(symbol) > 3):
                continue
            tradable.setdefault(crypto_base_symbol(symbol), symbol)

        matched = list(dict.fromkeys(tradable[s] for s in market_symbols if s in tradable))
        if not matched:
            logger.warning(
                "[crypto] universe no match provider=%s requested=%d symbols=%d",
                ranking.name,
                top_n,
                len(market_symbols),
            )
            return

        state.crypto_universe = CryptoUniverse(symbols=matched, updated_at=now)
        logger.info(
            "[crypto] universe updated provider=%s requested=%d symbols=%d tradable=%d",
            ranking.name,
            top_n,
            len(market_symbols),
            len(matched),
        )

    # ── data gathering ─────────────────────────────────────────────────

    async def _gather(self, ctx: WakeContext) -> None:
        state = self._require_state()
        result = await ctx.aggregator.gather(
            self.collab.social,
            self.collab.market_data,
            scan_equities=ctx.phase.scan_equities,
            crypto_symbols=ctx.crypto_symbols,
            now=ctx.now,
            timeout=self.timeout,
        )
        eligibility = EligibilityFilter(ctx.resolver, ctx.crypto_symbols, state.config.allowed_exchanges)
        signals = await eligibility.filter(result.signals)

        state.signal_cache = signals
        state.social_history = append_social_history(state.social_history, signals, ctx.now)
        logger.info(
            "[signals] data gathered stocktwits=%d reddit=%d crypto=%d manual=%d total=%d filtered_out=%d failures=%d",
            result.counts.get("stocktwits", 0),
            result.counts.get("reddit", 0),
            result.counts.get("crypto", 0),
            result.counts.get("manual", 0),
            len(signals),
            len(result.signals) - len(signals),
            len(result.failures),
        )

    async def _alpha_scan(self, ctx: WakeContext) -> None:
        state = self._require_state()
        state.alpha_scan = await ctx.scanner.scan(state.signal_cache, state.alpha_scan, ctx.now)

    # ── research ───────────────────────────────────────────────────────

    async def _research_symbol(
        self,
        ctx: WakeContext,
        symbol: str,
        sentiment: float,
        sources: list[str],
        price: float | None,
    ) -> ResearchVerdict | None:
        """Cached judge verdict for one symbol; None when the judge is off, fails or is unreadable."""
        state = self._require_state()
        if ctx.judge is None:
            logger.debug("[research] %s skipped: no judge configured", symbol)
            return None
        key = normalize_crypto_symbol(symbol, ctx.crypto_symbols)
        cached = state.research_cache.get(key, ctx.now)
        if cached is not None:
            return cached

        resolved = await ctx.resolver.resolve(symbol)
        if not resolved.is_crypto:
            if resolved.asset is None:
                logger.info("[research] %s skipped: asset_unavailable", symbol)
                return None
            if resolved.asset.status != "active" or not resolved.asset.tradable:
                logger.info(
                    "[research] %s skipped: asset_not_tradable status=%s tradable=%s",
                    symbol,
                    resolved.asset.status,
                    resolved.asset.tradable,
                )
                return None

        if not price:
            price = await self._last_price(resolved.symbol)

        try:
            outcome = await ctx.judge.research_signal(
                resolved.symbol, sentiment, sources, price or 0.0, resolved.is_crypto, ctx.now
            )
        except ProviderUnavailable as exc:
            logger.warning("[research] %s judge unavailable: %s", symbol, exc)
            return None
        self._record_usage(outcome.usage)
        if isinstance(outcome.result, Unparseable):
            return None

        verdict = outcome.result
        state.research_cache.put(key, verdict, ctx.now)
        logger.info(
            "[research] %s verdict=%s confidence=%.2f quality=%s",
            symbol,
            verdict.verdict,
            verdict.confidence,
            verdict.entry_quality,
        )
        if verdict.verdict == "BUY":
            await self._notify(
                Notification(
                    kind="research",
                    symbol=verdict.symbol,
                    title=f"{verdict.symbol} -> {verdict.verdict}",
                    details={
                        "verdict": verdict.verdict,
                        "confidence": verdict.confidence,
                        "quality": verdict.entry_quality,
                        "sentiment": sentiment,
                        "sources": sources,
                        "reasoning": verdict.reasoning,
                        "catalysts": verdict.catalysts,
                        "red_flags": verdict.red_flags,
                    },
                )
            )
        return verdict

    async def _last_price(self, symbol: str) -> float:
        try:
            snap = await guarded_call(self.collab.market_data.get_snapshot(symbol), self.timeout, f"snapshot/{symbol}")
        except ProviderUnavailable as exc:
            logger.debug("[research] %s price unavailable: %s", symbol, exc)
            return 0.0
        if snap is None:
            return 0.0
        if snap.latest_trade and snap.latest_trade.price:
            return snap.latest_trade.price
        return snap.daily_bar.close if snap.daily_bar else 0.0

    async def _research_top_signals(self, ctx: WakeContext, limit: int) -> list[ResearchVerdict]:
        """Research the strongest unheld signals whose raw sentiment clears the entry screen."""
        state = self._require_state()
        positions = await self._positions(ctx)
        held = held_symbol_keys(p.symbol for p in positions)

        not_held = [s for s in state.signal_cache if normalize_symbol(s.symbol) not in held]
        above = [s for s in not_held if s.raw_sentiment >= state.config.min_sentiment_score]
        candidates = sorted(above, key=lambda s: s.sentiment, reverse=True)[:limit]
        if not candidates:
            logger.info(
                "[research] no candidates total=%d not_held=%d above_threshold=%d min_sentiment=%.2f",
                len(state.signal_cache),
                len(not_held),
                len(above),
                state.config.min_sentiment_score,
            )
            return []

        grouped: dict[str, tuple[float, list[str], float | None]] = {}
        for sig in candidates:
            if sig.symbol not in grouped:
                grouped[sig.symbol] = (sig.sentiment, [sig.source], sig.price)
                continue
            sentiment, sources, price = grouped[sig.symbol]
            sources.append(sig.source)
            if sig.price:
                price = sig.price
            grouped[sig.symbol] = (sentiment, sources, price)

        logger.info("[research] researching %d symbols", len(grouped))
        results: list[ResearchVerdict] = []
        for symbol, (sentiment, sources, price) in grouped.items():
            verdict = await self._research_symbol(ctx, symbol, sentiment, sources, price)
            if verdict is not None:
                results.append(verdict)
        return results

    async def _confirm(self, ctx: WakeContext, symbol: str, existing_sentiment: float) -> ConfirmationResult | None:
        """Short-post confirmation, spending one read from the daily budget on a cache miss."""
        state = self._require_state()
        feed = self.collab.confirmation_feed
        if not self._confirmation_enabled() or feed is None:
            return None
        if not ctx.composer.should_confirm(existing_sentiment):
            return None
        cached = state.confirmation_cache.get(symbol, ctx.now)
        if cached is not None:
            return cached
        try:
            state.social_budget().spend(ctx.now)
        except RateBudgetExhausted as exc:
            logger.info("[confirmation] %s skipped: %s", symbol, exc)
            return None
        try:
            posts = await guarded_call(
                feed.fetch_recent(confirmation_query(symbol), CONFIRMATION_SOURCE, limit=CONFIRMATION_SAMPLE),
                self.timeout,
                f"confirmation/{symbol}",
            )
        except ProviderUnavailable as exc:
            logger.warning("[confirmation] %s unavailable: %s", symbol, exc)
            return None
        result = score_confirmation(symbol, posts, existing_sentiment, ctx.now)
        if result is not None:
            state.confirmation_cache.put(symbol, result, ctx.now)
            logger.info(
                "[confirmation] %s sentiment=%.2f confirms=%s samples=%d",
                symbol,
                result.sentiment,
                result.confirms_existing,
                result.sample_count,
            )
        return result

    # ── pre-open plan ──────────────────────────────────────────────────

    async def _build_premarket_plan(self, ctx: WakeContext) -> None:
        state = self._require_state()
        if ctx.judge is None or not state.signal_cache:
            return
        account = await self._account()
        logger.info(
            "[premarket] analysis starting signals=%d researched=%d",
            len(state.signal_cache),
            len(state.research_cache),
        )
        researched = await self._research_top_signals(ctx, PREMARKET_RESEARCH_LIMIT)
        positions = await self._positions(ctx)
        candidates = analyst_candidates(state.signal_cache, state.config.min_sentiment_score)
        outcome = await ctx.judge.analyze_signals(candidates, state.signal_cache, positions, account, ctx.now)
        self._record_usage(outcome.usage)
        if isinstance(outcome.result, Unparseable):
            logger.warning("[premarket] analyst plan unreadable: %s", outcome.result.reason)
            return

        plan = outcome.result
        state.premarket_plan = PremarketPlan(
            timestamp=ctx.now,
            recommendations=plan.recommendations,
            market_summary=plan.market_summary,
            high_conviction=plan.high_conviction,
            researched_buys=[r for r in researched if r.verdict == "BUY"],
        )
        logger.info(
            "[premarket] analysis complete buys=%d sells=%d high_conviction=%s",
            sum(1 for r in plan.recommendations if r.action == "BUY"),
            sum(1 for r in plan.recommendations if r.action == "SELL"),
            plan.high_conviction,
        )

    async def _execute_premarket_plan(self, ctx: WakeContext) -> None:
        state = self._require_state()
        plan = state.premarket_plan
        if plan is None:
            return
        if ctx.now - plan.timestamp > PLAN_STALE_SECONDS:
            logger.info("[premarket] plan stale (%.0fs old), discarding", ctx.now - plan.timestamp)
            state.premarket_plan = None
            return

        account = await self._account()
        positions = await self._positions(ctx)
        held = held_symbol_keys(p.symbol for p in positions)
        open_count = len(positions)
        threshold = state.config.min_analyst_confidence
        logger.info("[premarket] executing plan recommendations=%d", len(plan.recommendations))

        for rec in plan.recommendations:
            if rec.action == "SELL" and rec.confidence >= threshold:
                if await self._close(ctx, rec.symbol, f"Pre-market plan: {rec.reasoning}"):
                    open_count -= 1

        for rec in plan.recommendations:
            if rec.action != "BUY" or rec.confidence < threshold:
                continue
            if normalize_symbol(rec.symbol) in held:
                continue
            if open_count >= state.config.max_positions:
                break
            bought = await self._buy(ctx, rec.symbol, rec.confidence, account, rec.reasoning, "premarket")
            if bought:
                held |= held_symbol_keys([bought, rec.symbol])
                open_count += 1

        state.premarket_plan = None

    # ── crypto ─────────────────────────────────────────────────────────

    async def _crypto_pass(self, ctx: WakeContext) -> None:
        state = self._require_state()
        positions = await self._positions(ctx)
        crypto_positions = [p for p in positions if self._is_crypto_position(ctx, p)]
        held = {crypto_symbol_key(p.symbol) for p in crypto_positions}

        open_count = len(crypto_positions)
        for pos in crypto_positions:
            decision = ctx.lifecycle.exit_for(pos, crypto=True)
            if decision is None:
                continue
            logger.info("[crypto] %s %s pnl=%.2f", decision.kind, pos.symbol, decision.pnl_pct or 0.0)
            if await self._close(ctx, pos.symbol, decision.reason):
                open_count -= 1

        max_positions = min(len(ctx.crypto_symbols) or MAX_CRYPTO_POSITIONS, MAX_CRYPTO_POSITIONS)
        if open_count >= max_positions:
            logger.info("[crypto] entry skipped: max positions held=%d max=%d", open_count, max_positions)
            return

        scan = state.alpha_scan
        pool = scan.edge_candidates or scan.top_alpha
        alpha_by_symbol = {normalize_symbol(c.symbol): c for c in pool if c.is_crypto}
        if not alpha_by_symbol:
            logger.info(
                "[crypto] entry skipped: no alpha candidates (top_alpha=%d edge_candidates=%d)",
                len(scan.top_alpha),
                len(scan.edge_candidates),
            )
            return

        primary = state.config.crypto_momentum_threshold
        fallback = max(MOMENTUM_FALLBACK_FLOOR, primary * 0.5)
        candidates = self._crypto_candidates(held, alpha_by_symbol, primary)
        if not candidates and fallback < primary:
            candidates = self._crypto_candidates(held, alpha_by_symbol, fallback)
            if candidates:
                logger.info(
                    "[crypto] momentum fallback primary=%.2f fallback=%.2f candidates=%d",
                    primary,
                    fallback,
                    len(candidates),
                )
        if not candidates:
            logger.info(
                "[crypto] entry skipped: no signals total=%d held=%d alpha=%d",
                len(state.signal_cache),
                len(held),
                len(alpha_by_symbol),
            )
            return

        for signal in candidates:
            alpha = alpha_by_symbol[normalize_symbol(signal.symbol)]
            verdict = await self._research_symbol(ctx, signal.symbol, signal.sentiment, [signal.source], signal.price)
            decision = ctx.composer.compose(signal.symbol, kind="crypto", alpha=alpha, verdict=verdict)
            if not decision.approved:
                continue
            account = await self._account()
            bought = await self._buy(ctx, signal.symbol, decision.confidence, account, signal.reason, signal.source)
            if bought:
                logger.info(
                    "[crypto] alpha trade %s alpha=%.4f confidence=%.3f", bought, alpha.alpha, decision.confidence
                )
                break

    def _crypto_candidates(
        self,
        held: set[str],
        alpha_by_symbol: dict[str, AlphaCandidate],
        min_momentum: float,
    ) -> list[Signal]:
        state = self._require_state()
        out = [
            s
            for s in state.signal_cache
            if s.is_crypto
            and crypto_symbol_key(s.symbol) not in held
            and not is_stablecoin(s.symbol)
            and (s.momentum or 0.0) >= min_momentum
            and normalize_symbol(s.symbol) in alpha_by_symbol
        ]
        out.sort(key=lambda s: alpha_by_symbol[normalize_symbol(s.symbol)].alpha, reverse=True)
        return out

    # ── analyst ────────────────────────────────────────────────────────

    async def _analyst_pass(self, ctx: WakeContext) -> None:
        state = self._require_state()
        config = state.config
        account = await self._account()
        positions = await self._positions(ctx)
        held = held_symbol_keys(p.symbol for p in positions)
        open_count = len(positions)

        for pos in positions:
            if pos.is_option:
                continue
            if await self._check_exit(ctx, pos):
                open_count -= 1

        if open_count >= config.max_positions:
            logger.info("[analyst] entry skipped: max positions held=%d max=%d", open_count, config.max_positions)
            return
        if not state.signal_cache:
            logger.info("[analyst] entry skipped: signal cache empty")
            return

        threshold = config.min_analyst_confidence
        research = [v for _, v in state.research_cache.fresh_items(ctx.now)]
        buys = [v for v in research if v.verdict == "BUY"]
        above = [v for v in buys if v.confidence >= threshold]
        logger.info(
            "[analyst] research summary total=%d buy=%d above=%d below=%d held=%d threshold=%.2f",
            len(research),
            len(buys),
            len(above),
            len(buys) - len(above),
            sum(1 for v in above if normalize_symbol(v.symbol) in held),
            threshold,
        )
        researched = sorted(
            (v for v in above if normalize_symbol(v.symbol) not in held),
            key=lambda v: v.confidence,
            reverse=True,
        )

        for verdict in researched[:RESEARCHED_BUYS_PER_PASS]:
            if open_count >= config.max_positions:
                break
            if normalize_symbol(verdict.symbol) in held:
                continue
            signal = state.first_signal(verdict.symbol)
            confirmation = await self._confirm(ctx, verdict.symbol, signal.sentiment) if signal else None
            decision = ctx.composer.compose(verdict.symbol, kind="equity", verdict=verdict, confirmation=confirmation)
            if not decision.approved:
                continue

            if ctx.options is not None:
                await self._maybe_open_option(ctx, verdict, confirmation, positions, account)

            bought = await self._buy(ctx, verdict.symbol, decision.confidence, account, verdict.reasoning, "research")
            if bought:
                held |= held_symbol_keys([bought, verdict.symbol])
                open_count += 1

        if open_count >= config.max_positions or ctx.judge is None:
            return

        candidates = analyst_candidates(state.signal_cache, config.min_sentiment_score)
        outcome = await ctx.judge.analyze_signals(candidates, state.signal_cache, positions, account, ctx.now)
        self._record_usage(outcome.usage)
        if isinstance(outcome.result, Unparseable):
            logger.warning("[analyst] plan unreadable: %s", outcome.result.reason)
            return

        researched_symbols = {normalize_symbol(v.symbol) for v in researched}
        for rec in outcome.result.recommendations:
            if open_count >= config.max_positions:
                break
            if rec.action != "BUY":
                logger.info("[analyst] rec skip %s: action_not_buy (%s)", rec.symbol, rec.action)
                continue
            if rec.confidence < threshold:
                logger.info(
                    "[analyst] rec skip %s: below_threshold confidence=%.3f required=%.3f",
                    rec.symbol,
                    rec.confidence,
                    threshold,
                )
                continue
            if rec.symbol in held:
                logger.info("[analyst] rec skip %s: already_held", rec.symbol)
                continue
            if rec.symbol in researched_symbols:
                logger.info("[analyst] rec skip %s: already_researched", rec.symbol)
                continue
            bought = await self._buy(ctx, rec.symbol, rec.confidence, account, rec.reasoning, "analyst")
            if bought:
                held |= held_symbol_keys([bought, rec.symbol])
                open_count += 1

    async def _check_exit(self, ctx: WakeContext, pos: Position) -> bool:
        """TP/SL first, then staleness. True when the position was closed."""
        state = self._require_state()
        decision = ctx.lifecycle.exit_for(pos, crypto=self._is_crypto_position(ctx, pos))
        if decision is not None:
            return await self._close(ctx, pos.symbol, decision.reason)

        if not state.config.stale_position_enabled:
            return False
        key = self._entry_key(pos.symbol)
        if key is None:
            return False
        volume = current_social_volume(state.social_history, key, ctx.now, state.config.stale_no_mentions_hours)
        score = ctx.lifecycle.staleness(state.position_entries[key], pos.current_price, volume, ctx.now)
        state.staleness[key] = score
        if not score.is_stale:
            return False
        return await self._close(ctx, pos.symbol, f"STALE: {score.reason}")

    async def _maybe_open_option(
        self,
        ctx: WakeContext,
        verdict: ResearchVerdict,
        confirmation: ConfirmationResult | None,
        positions: list[Position],
        account: Account,
    ) -> None:
        planner = ctx.options
        if planner is None:
            return
        decision = ctx.composer.compose(verdict.symbol, kind="option", verdict=verdict, confirmation=confirmation)
        if not decision.approved or not planner.can_open(positions, account.equity):
            return
        contract = await planner.select_contract(verdict.symbol, "bullish", account.equity, ctx.now)
        if contract is None:
            return
        spec = planner.order_spec(contract, 1, account.equity)
        if spec is None:
            return
        try:
            await ctx.lifecycle.submit(spec)
        except OrderRejected as exc:
            logger.warning("[options] %s buy rejected: %s", contract.symbol, exc.reason)
            return
        logger.info("[options] position opened %s via %s qty=%s", verdict.symbol, contract.symbol, spec.qty)

    # ── position research / options exits / news ───────────────────────

    async def _position_research(self, ctx: WakeContext) -> None:
        state = self._require_state()
        if ctx.judge is None:
            return
        for pos in await self._positions(ctx):
            if pos.is_option:
                continue
            try:
                outcome = await ctx.judge.review_position(pos, ctx.now)
            except ProviderUnavailable as exc:
                logger.warning("[position_research] %s unavailable: %s", pos.symbol, exc)
                continue
            self._record_usage(outcome.usage)
            if isinstance(outcome.result, Unparseable):
                continue
            state.position_research[normalize_symbol(pos.symbol)] = outcome.result
            logger.info(
                "[position_research] %s recommendation=%s risk=%s",
                pos.symbol,
                outcome.result.recommendation,
                outcome.result.risk_level,
            )

    async def _options_exits(self, ctx: WakeContext) -> None:
        for pos in await self._positions(ctx):
            decision = ctx.lifecycle.option_exit_for(pos)
            if decision is not None:
                await self._close(ctx, pos.symbol, decision.reason)

    async def _breaking_news(self, ctx: WakeContext) -> None:
        state = self._require_state()
        feed = self.collab.confirmation_feed
        if feed is None:
            return
        positions = await self._positions(ctx)
        symbols = [crypto_base_symbol(p.symbol) for p in positions][:NEWS_SYMBOLS]
        if not symbols:
            return
        try:
            state.social_budget().spend(ctx.now)
        except RateBudgetExhausted as exc:
            logger.info("[news] skipped: %s", exc)
            return
        posts = await guarded_call(
            feed.fetch_recent(breaking_news_query(symbols), CONFIRMATION_SOURCE, limit=NEWS_SAMPLE),
            self.timeout,
            "breaking_news",
        )
        for item in detect_breaking_news(symbols, posts, ctx.now):
            if not item.is_breaking:
                continue
            logger.info("[news] breaking %s: %s", item.symbol, item.headline[:100])
            await self._notify(
                Notification(
                    kind="breaking",
                    symbol=item.symbol,
                    title=f"BREAKING {item.symbol}",
                    details={"headline": item.headline, "author": item.author, "age_minutes": item.age_minutes},
                )
            )

    # ── operator surface ───────────────────────────────────────────────

    async def close_position(self, symbol: str, reason: str = "") -> dict[str, Any]:
        """Manual close under every spelling the brokerage might use; state is cleaned only on success."""
        state = await self.load()
        now = self._clock()
        ctx = self._context(now, market_phase(MarketClock(), now, state.config.crypto_enabled))
        target = normalize_symbol(symbol)
        if not target:
            return {"ok": False, "error": "symbol is required"}
        full_reason = f"Manual close: {reason}" if reason else "Manual close"

        resolved = await ctx.resolver.resolve(target)
        if resolved.asset is None:
            return {"ok": False, "error": "Asset not found", "symbol": target}
        if not resolved.is_crypto:
            try:
                clock = await self._read_clock()
            except ProviderUnavailable as exc:
                logger.warning("[executor] clock unavailable for manual close: %s", exc)
            else:
                if not clock.is_open:
                    return {"ok": False, "error": "Market closed", "symbol": target}

        ok = await self._close(ctx, target, full_reason, [resolved.symbol, resolved.asset.symbol])
        await self.store.save(state)
        return {"ok": ok, "symbol": target}

    async def set_enabled(self, enabled: bool) -> None:
        state = await self.load()
        state.enabled = enabled
        await self.store.save(state)
        logger.info("[controller] agent %s", "enabled" if enabled else "disabled")

    async def update_config(self, overrides: dict[str, Any]) -> None:
        """Validated merge; raises ``ConfigError`` and leaves the config untouched on bad input."""
        state = await self.load()
        state.config = merge_config(state.config, overrides)
        state.sync_config()
        await self.store.save(state)
        logger.info("[config] updated keys=%s", sorted(overrides))

    def status(self) -> dict[str, Any]:
        """Snapshot for status reporting."""
        state = self._require_state()
        now = self._clock()
        return {
            "enabled": state.enabled,
            "signals": [s.model_dump() for s in state.signal_cache],
            "alpha_scan": state.alpha_scan.model_dump(),
            "position_entries": {k: v.model_dump() for k, v in state.position_entries.items()},
            "staleness": {k: v.model_dump() for k, v in state.staleness.items()},
            "research": {k: v.model_dump() for k, v in state.research_cache.fresh_items(now)},
            "position_research": {k: v.model_dump() for k, v in state.position_research.items()},
            "premarket_plan": state.premarket_plan.model_dump() if state.premarket_plan else None,
            "costs": state.cost_tracker.model_dump(),
            "crypto_universe": {
                "enabled": state.config.crypto_enabled and state.config.crypto_universe_top_n > 0,
                "size": len(state.crypto_universe.symbols),
                "updated_at": state.crypto_universe.updated_at,
            },
            "social_reads_remaining": state.social_budget().remaining(now),
            "last_runs": {
                "data_gather": state.last_data_gather,
                "research": state.last_research,
                "analyst": state.last_analyst,
                "position_research": state.last_position_research,
            },
        }
