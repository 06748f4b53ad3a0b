from __future__ import annotations

import pytest

from alphadesk.cache import RateBudget, TTLCache
from alphadesk.errors import RateBudgetExhausted
from alphadesk.models import ResearchVerdict

NOW = 1_700_000_000.0


def _verdict(symbol: str) -> ResearchVerdict:
    return ResearchVerdict(symbol=symbol, verdict="BUY", confidence=0.7)


def test_ttl_cache_expires_entries() -> None:
    cache = TTLCache[ResearchVerdict](purpose="research", ttl_seconds=180)
    cache.put("NVDA", _verdict("NVDA"), NOW)

    assert cache.get("NVDA", NOW + 179) is not None
    assert cache.get("NVDA", NOW + 180) is None
    assert cache.get("AMD", NOW) is None
    assert cache.age("NVDA", NOW + 30) == pytest.approx(30)


def test_ttl_cache_prune_and_fresh_items() -> None:
    cache = TTLCache[ResearchVerdict](purpose="research", ttl_seconds=100)
    cache.put("OLD", _verdict("OLD"), NOW - 200)
    cache.put("NEW", _verdict("NEW"), NOW - 10)

    assert [k for k, _ in cache.fresh_items(NOW)] == ["NEW"]
    assert cache.prune(NOW) == 1
    assert "OLD" not in cache
    assert len(cache) == 1


def test_ttl_cache_round_trips_through_json() -> None:
    cache = TTLCache[ResearchVerdict](purpose="research", ttl_seconds=100)
    cache.put("NVDA", _verdict("NVDA"), NOW)

    restored = TTLCache[ResearchVerdict].model_validate_json(cache.model_dump_json())

    value = restored.get("NVDA", NOW + 1)
    assert isinstance(value, ResearchVerdict)
    assert value.confidence == pytest.approx(0.7)


def test_rate_budget_spends_until_exhausted() -> None:
    budget = RateBudget(name="social_reads", daily_limit=2, reset_anchor=NOW)
    budget.spend(NOW)
    budget.spend(NOW + 1)

    assert budget.remaining(NOW + 2) == 0
    assert budget.can_spend(NOW + 2) is False
    with pytest.raises(RateBudgetExhausted):
        budget.spend(NOW + 2)
    assert budget.used_count == 2


def test_rate_budget_resets_after_a_day() -> None:
    budget = RateBudget(name="social_reads", daily_limit=1, used_count=1, reset_anchor=NOW)
    assert budget.remaining(NOW + 86_000) == 0
    assert budget.remaining(NOW + 86_401) == 1
    assert budget.reset_anchor == NOW + 86_401


def test_rate_budget_zero_limit_never_spends() -> None:
    budget = RateBudget(name="social_reads", daily_limit=0)
    with pytest.raises(RateBudgetExhausted):
        budget.spend(NOW)
