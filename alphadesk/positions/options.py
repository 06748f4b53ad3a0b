"""Options contract selection for high-conviction equity entries."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Literal

from alphadesk.config import AgentConfig
from alphadesk.errors import ProviderUnavailable
from alphadesk.models import OptionContract, OrderSpec, Position, SelectedContract
from alphadesk.providers.base import MarketDataProvider, OptionsDataProvider
from alphadesk.utils import guarded_call

logger = logging.getLogger(__name__)

Direction = Literal["bullish", "bearish"]

CONTRACT_MULTIPLIER = 100
STRIKES_TO_CHECK = 5
MAX_SPREAD_PCT = 0.10
STRIKE_DELTA_SCALE = 0.2


def days_to_expiration(expiration: str, now: float) -> int:
    exp = datetime.strptime(expiration, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    return math.ceil((exp.timestamp() - now) / 86_400)


def target_strike(price: float, target_delta: float, direction: Direction) -> float:
    shift = (target_delta - 0.5) * STRIKE_DELTA_SCALE
    return price * (1 - shift) if direction == "bullish" else price * (1 + shift)


class OptionsPlanner:
    def __init__(
        self,
        config: AgentConfig,
        options: OptionsDataProvider,
        market_data: MarketDataProvider,
        timeout: float = 20.0,
    ) -> None:
        self.config = config
        self.options = options
        self.market_data = market_data
        self.timeout = timeout

    def can_open(self, positions: list[Position], equity: float) -> bool:
        """Respect the open-contract count and total premium exposure limits."""
        held = [p for p in positions if p.is_option]
        if len(held) >= self.config.options_max_positions:
            logger.info("[options] skipped: %d option positions held (max %d)", len(held), self.config.options_max_positions)
            return False
        exposure = sum(abs(p.market_value) for p in held)
        limit = equity * self.config.options_max_total_exposure
        if exposure >= limit:
            logger.info("[options] skipped: exposure %.2f >= limit %.2f", exposure, limit)
            return False
        return True

    def pick_expiration(self, expirations: list[str], now: float) -> str | None:
        """Expiration inside the DTE window closest to its midpoint."""
        lo, hi = self.config.options_min_dte, self.config.options_max_dte
        valid: list[tuple[str, int]] = []
        for exp in expirations:
            try:
                dte = days_to_expiration(exp, now)
            except ValueError:
                logger.debug("[options] ignoring malformed expiration %r", exp)
                continue
            if lo <= dte <= hi:
                valid.append((exp, dte))
        if not valid:
            return None
        target = (lo + hi) / 2
        best = valid[0]
        for exp, dte in valid[1:]:
            if abs(dte - target) < abs(best[1] - target):
                best = (exp, dte)
        return best[0]

    async def select_contract(
        self,
        underlying: str,
        direction: Direction,
        equity: float,
        now: float,
    ) -> SelectedContract | None:
        """First contract near the target strike that passes delta, spread and budget checks."""
        cfg = self.config
        try:
            expirations = await guarded_call(
                self.options.get_expirations(underlying), self.timeout, f"options/expirations/{underlying}"
            )
            expiration = self.pick_expiration(expirations or [], now)
            if expiration is None:
                logger.info("[options] %s no expiration within %d-%d DTE", underlying, cfg.options_min_dte, cfg.options_max_dte)
                return None

            chain = await guarded_call(
                self.options.get_chain(underlying, expiration), self.timeout, f"options/chain/{underlying}"
            )
            contracts: list[OptionContract] = []
            if chain is not None:
                contracts = chain.calls if direction == "bullish" else chain.puts
            if not contracts:
                logger.info("[options] %s no %s contracts for %s", underlying, direction, expiration)
                return None

            quote = await guarded_call(self.market_data.get_quote(underlying), self.timeout, f"quote/{underlying}")
            price = (quote.ask_price or quote.bid_price) if quote is not None else 0.0
            if price <= 0:
                return None

            strike = target_strike(price, cfg.options_target_delta, direction)
            nearest = sorted((c for c in contracts if c.strike > 0), key=lambda c: abs(c.strike - strike))
            budget = equity * cfg.options_max_pct_per_trade

            for contract in nearest[:STRIKES_TO_CHECK]:
                snap = await guarded_call(
                    self.options.get_snapshot(contract.symbol), self.timeout, f"options/snapshot/{contract.symbol}"
                )
                if snap is None or snap.delta is None:
                    continue
                if not (cfg.options_min_delta <= abs(snap.delta) <= cfg.options_max_delta):
                    continue
                bid, ask = snap.bid_price, snap.ask_price
                if bid <= 0 or ask <= 0:
                    continue
                if (ask - bid) / ask > MAX_SPREAD_PCT:
                    continue
                mid = (bid + ask) / 2
                max_contracts = math.floor(budget / (mid * CONTRACT_MULTIPLIER))
                if max_contracts < 1:
                    continue

                logger.info(
                    "[options] %s selected %s strike=%.2f exp=%s delta=%.3f mid=%.2f",
                    underlying,
                    contract.symbol,
                    contract.strike,
                    expiration,
                    snap.delta,
                    mid,
                )
                return SelectedContract(
                    symbol=contract.symbol,
                    strike=contract.strike,
                    expiration=expiration,
                    delta=snap.delta,
                    mid_price=mid,
                    max_contracts=max_contracts,
                )
        except ProviderUnavailable as exc:
            logger.warning("[options] %s contract search failed: %s", underlying, exc)
        return None

    def order_spec(self, contract: SelectedContract, quantity: int, equity: float) -> OrderSpec | None:
        """Day limit order at mid, shrunk to the per-trade budget; None when not even one fits."""
        budget = equity * self.config.options_max_pct_per_trade
        cost = contract.mid_price * quantity * CONTRACT_MULTIPLIER
        if cost > budget:
            quantity = math.floor(budget / (contract.mid_price * CONTRACT_MULTIPLIER))
            if quantity < 1:
                logger.info("[options] %s skipped: cost %.2f over budget %.2f", contract.symbol, cost, budget)
                return None
        return OrderSpec(
            symbol=contract.symbol,
            side="buy",
            type="limit",
            time_in_force="day",
            qty=quantity,
            limit_price=round(contract.mid_price, 2),
        )
