"""Time-bounded cache and daily call budgets.

Both are plain pydantic models so they persist inside ``AgentState`` as-is.
Every method takes ``now`` explicitly; nothing here reads the clock.
"""

from __future__ import annotations

import logging
from typing import Generic, Iterator, TypeVar

from pydantic import BaseModel, Field

from alphadesk.errors import RateBudgetExhausted

logger = logging.getLogger(__name__)

V = TypeVar("V")

DAY_SECONDS = 86_400.0


class CacheEntry(BaseModel, Generic[V]):
    stored_at: float
    value: V


class TTLCache(BaseModel, Generic[V]):
    """Per-purpose cache keyed by symbol. Entries older than ``ttl_seconds`` read as missing."""

    purpose: str
    ttl_seconds: float = 300.0
    entries: dict[str, CacheEntry[V]] = Field(default_factory=dict)

    def get(self, key: str, now: float) -> V | None:
        entry = self.entries.get(key)
        if entry is None:
            return None
        if now - entry.stored_at >= self.ttl_seconds:
            return None
        return entry.value

    def put(self, key: str, value: V, now: float) -> None:
        self.entries[key] = CacheEntry[V](stored_at=now, value=value)

    def age(self, key: str, now: float) -> float | None:
        entry = self.entries.get(key)
        return None if entry is None else now - entry.stored_at

    def discard(self, key: str) -> None:
        self.entries.pop(key, None)

    def prune(self, now: float) -> int:
        """Drop expired entries; returns how many were removed."""
        expired = [k for k, e in self.entries.items() if now - e.stored_at >= self.ttl_seconds]
        for key in expired:
            del self.entries[key]
        if expired:
            logger.debug("[cache] %s pruned %d expired entries", self.purpose, len(expired))
        return len(expired)

    def fresh_items(self, now: float) -> Iterator[tuple[str, V]]:
        for key, entry in self.entries.items():
            if now - entry.stored_at < self.ttl_seconds:
                yield key, entry.value

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def __len__(self) -> int:
        return len(self.entries)


class RateBudget(BaseModel):
    """Rolling daily quota. The window restarts once 24h have passed since its anchor."""

    name: str
    daily_limit: int = 200
    used_count: int = 0
    reset_anchor: float = 0.0

    def _roll(self, now: float) -> None:
        if now - self.reset_anchor > DAY_SECONDS:
            self.used_count = 0
            self.reset_anchor = now

    def remaining(self, now: float) -> int:
        self._roll(now)
        return max(0, self.daily_limit - self.used_count)

    def can_spend(self, now: float, count: int = 1) -> bool:
        return self.remaining(now) >= count

    def spend(self, now: float, count: int = 1) -> None:
        if not self.can_spend(now, count):
            raise RateBudgetExhausted(self.name, self.daily_limit)
        self.used_count += count
        logger.info(
            "[budget] %s spent %d (daily_total=%d remaining=%d)",
            self.name,
            count,
            self.used_count,
            self.daily_limit - self.used_count,
        )
