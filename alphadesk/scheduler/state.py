"""Persisted agent state and the stores that hold it between wakes."""

from __future__ import annotations

import abc
import json
import logging
from typing import Any, Iterable

import redis.asyncio as aioredis
from pydantic import BaseModel, Field, ValidationError
from redis.exceptions import RedisError

from alphadesk.cache import RateBudget, TTLCache
from alphadesk.config import AgentConfig, get_settings, merge_config
from alphadesk.errors import ConfigError, ProviderUnavailable
from alphadesk.models import (
    AlphaScanState,
    ConfirmationResult,
    CostTracker,
    CryptoUniverse,
    PositionEntry,
    PositionReview,
    PremarketPlan,
    ResearchVerdict,
    Signal,
    SocialHistoryEntry,
    StalenessScore,
)
from alphadesk.symbols import normalize_symbol

logger = logging.getLogger(__name__)

SOCIAL_BUDGET = "social_reads"
HOUR = 3600.0


def _research_cache() -> TTLCache[ResearchVerdict]:
    return TTLCache[ResearchVerdict](purpose="research", ttl_seconds=180.0)


def _confirmation_cache() -> TTLCache[ConfirmationResult]:
    return TTLCache[ConfirmationResult](purpose="confirmation", ttl_seconds=300.0)


class AgentState(BaseModel):
    """Everything the controller carries from one wake to the next."""

    config: AgentConfig = Field(default_factory=AgentConfig)
    enabled: bool = False

    signal_cache: list[Signal] = Field(default_factory=list)
    alpha_scan: AlphaScanState = Field(default_factory=AlphaScanState)
    position_entries: dict[str, PositionEntry] = Field(default_factory=dict)
    social_history: dict[str, list[SocialHistoryEntry]] = Field(default_factory=dict)
    staleness: dict[str, StalenessScore] = Field(default_factory=dict)
    position_research: dict[str, PositionReview] = Field(default_factory=dict)
    research_cache: TTLCache[ResearchVerdict] = Field(default_factory=_research_cache)
    confirmation_cache: TTLCache[ConfirmationResult] = Field(default_factory=_confirmation_cache)
    rate_budgets: dict[str, RateBudget] = Field(default_factory=dict)
    cost_tracker: CostTracker = Field(default_factory=CostTracker)
    crypto_universe: CryptoUniverse = Field(default_factory=CryptoUniverse)
    premarket_plan: PremarketPlan | None = None

    last_data_gather: float = 0.0
    last_research: float = 0.0
    last_analyst: float = 0.0
    last_position_research: float = 0.0

    def sync_config(self) -> None:
        """Push config-driven TTLs and limits into the caches and budgets."""
        self.research_cache.ttl_seconds = self.config.research_cache_ttl_seconds
        self.confirmation_cache.ttl_seconds = self.config.confirmation_cache_ttl_seconds
        self.social_budget().daily_limit = self.config.social_daily_read_limit

    def social_budget(self) -> RateBudget:
        budget = self.rate_budgets.get(SOCIAL_BUDGET)
        if budget is None:
            budget = RateBudget(name=SOCIAL_BUDGET, daily_limit=self.config.social_daily_read_limit)
            self.rate_budgets[SOCIAL_BUDGET] = budget
        return budget

    def active_crypto_symbols(self) -> list[str]:
        """The ranked universe when one is configured and loaded, else the configured list."""
        if self.config.crypto_universe_top_n > 0 and self.crypto_universe.symbols:
            return list(self.crypto_universe.symbols)
        return list(self.config.crypto_symbols)

    def first_signal(self, symbol: str) -> Signal | None:
        target = normalize_symbol(symbol)
        return next((s for s in self.signal_cache if s.symbol == target), None)

    def prune(self, now: float) -> None:
        """Drop expired cache entries and social history for symbols that went quiet and are not held."""
        self.research_cache.prune(now)
        self.confirmation_cache.prune(now)
        window = self.config.stale_no_mentions_hours * HOUR
        for symbol, points in list(self.social_history.items()):
            if symbol in self.position_entries:
                continue
            if not points or now - points[-1].timestamp > window:
                del self.social_history[symbol]

    def forget(self, symbols: Iterable[str]) -> None:
        """Drop every per-symbol record for a position that has been closed."""
        for symbol in symbols:
            key = normalize_symbol(symbol)
            self.position_entries.pop(key, None)
            self.social_history.pop(key, None)
            self.staleness.pop(key, None)
            self.position_research.pop(key, None)


def restore_state(doc: dict[str, Any]) -> AgentState:
    """Rebuild state from a stored document, falling back to defaults per broken field."""
    try:
        config = merge_config(doc.get("config"))
    except ConfigError as exc:
        logger.warning("[state] stored config rejected, using defaults: %s", exc)
        config = AgentConfig()

    kept: dict[str, Any] = {}
    for name in AgentState.model_fields:
        if name == "config" or name not in doc:
            continue
        try:
            AgentState.model_validate({name: doc[name]})
        except ValidationError as exc:
            logger.warning("[state] dropping unreadable field %s: %s", name, exc.errors()[0].get("msg", exc))
            continue
        kept[name] = doc[name]

    state = AgentState.model_validate(kept)
    state.config = config
    state.sync_config()
    return state


class StateStore(abc.ABC):
    @abc.abstractmethod
    async def load(self) -> AgentState:
        """Bad data falls back to defaults; only an unreachable backend raises ``ProviderUnavailable``."""

    @abc.abstractmethod
    async def save(self, state: AgentState) -> None:
        ...

    async def close(self) -> None:
        return None


class MemoryStateStore(StateStore):
    def __init__(self, initial: AgentState | None = None) -> None:
        self._doc: str | None = initial.model_dump_json() if initial is not None else None
        self.saves = 0

    async def load(self) -> AgentState:
        if self._doc is None:
            state = AgentState()
            state.sync_config()
            return state
        return restore_state(json.loads(self._doc))

    async def save(self, state: AgentState) -> None:
        self._doc = state.model_dump_json()
        self.saves += 1


class RedisStateStore(StateStore):
    """The whole state as one JSON document under a single key."""

    def __init__(self, redis_client: aioredis.Redis | None = None, key: str | None = None) -> None:
        settings = get_settings()
        self._redis = redis_client or aioredis.from_url(settings.redis_url, decode_responses=True)
        self.key = key or settings.state_key

    async def load(self) -> AgentState:
        try:
            raw = await self._redis.get(self.key)
        except (RedisError, OSError) as exc:
            raise ProviderUnavailable("state/redis", str(exc)) from exc
        if not raw:
            logger.info("[state] no stored state under %s, starting fresh", self.key)
            state = AgentState()
            state.sync_config()
            return state
        try:
            doc = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.error("[state] stored state under %s is not JSON, starting fresh: %s", self.key, exc)
            doc = {}
        if not isinstance(doc, dict):
            logger.error("[state] stored state under %s is not an object, starting fresh", self.key)
            doc = {}
        return restore_state(doc)

    async def save(self, state: AgentState) -> None:
        try:
            await self._redis.set(self.key, state.model_dump_json())
        except (RedisError, OSError) as exc:
            raise ProviderUnavailable("state/redis", str(exc)) from exc

    async def close(self) -> None:
        await self._redis.aclose()
