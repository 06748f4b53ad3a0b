from __future__ import annotations

import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from alphadesk.config import AgentConfig
from alphadesk.errors import ProviderUnavailable
from alphadesk.models import ConfirmationResult, PositionEntry, ResearchVerdict, SocialHistoryEntry
from alphadesk.scheduler.state import AgentState, MemoryStateStore, RedisStateStore, restore_state

NOW = 1_700_000_000.0


class FakeRedis:
    def __init__(self, stored: str | None = None, fail: bool = False) -> None:
        self.data: dict[str, str] = {}
        if stored is not None:
            self.data["state"] = stored
        self.fail = fail
        self.closed = False

    async def get(self, key: str) -> str | None:
        if self.fail:
            raise RedisConnectionError("connection refused")
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.data[key] = value

    async def aclose(self) -> None:
        self.closed = True


def test_forget_drops_every_per_symbol_record() -> None:
    state = AgentState(
        position_entries={"NVDA": PositionEntry(symbol="NVDA", entry_time=NOW), "AMD": PositionEntry(symbol="AMD", entry_time=NOW)},
        social_history={"NVDA": [SocialHistoryEntry(timestamp=NOW, volume=3.0)]},
    )
    state.forget(["nvda"])
    assert list(state.position_entries) == ["AMD"]
    assert state.social_history == {}


def test_prune_keeps_history_for_held_symbols() -> None:
    state = AgentState(
        config=AgentConfig(stale_no_mentions_hours=2),
        position_entries={"NVDA": PositionEntry(symbol="NVDA", entry_time=NOW)},
        social_history={
            "NVDA": [SocialHistoryEntry(timestamp=NOW - 3 * 3600, volume=3.0)],
            "AMD": [SocialHistoryEntry(timestamp=NOW - 3 * 3600, volume=3.0)],
            "TSLA": [SocialHistoryEntry(timestamp=NOW - 3600, volume=3.0)],
            "GME": [],
        },
    )
    state.confirmation_cache.put("NVDA", ConfirmationResult(symbol="NVDA"), NOW - 600)

    state.prune(NOW)

    assert sorted(state.social_history) == ["NVDA", "TSLA"]
    assert len(state.confirmation_cache) == 0


def test_active_crypto_symbols_prefers_loaded_universe() -> None:
    state = AgentState(config=AgentConfig(crypto_symbols=["BTC/USD"], crypto_universe_top_n=10))
    assert state.active_crypto_symbols() == ["BTC/USD"]
    state.crypto_universe.symbols = ["ETH/USD", "SOL/USD"]
    assert state.active_crypto_symbols() == ["ETH/USD", "SOL/USD"]
    state.config = AgentConfig(crypto_symbols=["BTC/USD"], crypto_universe_top_n=0)
    assert state.active_crypto_symbols() == ["BTC/USD"]


def test_restore_state_falls_back_per_field() -> None:
    doc = {
        "config": {"max_positions": 3, "retired_knob": 1},
        "enabled": "sometimes",
        "last_analyst": NOW,
        "position_entries": {"NVDA": {"symbol": "NVDA"}},
    }
    state = restore_state(doc)
    assert state.config.max_positions == 3
    assert state.enabled is False
    assert state.last_analyst == NOW
    assert state.position_entries == {}


def test_restore_state_replaces_invalid_config() -> None:
    state = restore_state({"config": {"stop_loss_pct": 1000}, "enabled": True})
    assert state.config == AgentConfig()
    assert state.enabled is True


@pytest.mark.asyncio
async def test_memory_store_round_trips_caches() -> None:
    state = AgentState()
    state.research_cache.put("NVDA", ResearchVerdict(symbol="NVDA", verdict="BUY", confidence=0.7), NOW)
    store = MemoryStateStore()

    await store.save(state)
    loaded = await store.load()

    assert loaded.research_cache.get("NVDA", NOW + 1).verdict == "BUY"
    assert store.saves == 1


@pytest.mark.asyncio
async def test_redis_store_round_trip() -> None:
    fake = FakeRedis()
    store = RedisStateStore(redis_client=fake, key="state")

    fresh = await store.load()
    assert fresh.enabled is False

    fresh.enabled = True
    fresh.position_entries["NVDA"] = PositionEntry(symbol="NVDA", entry_time=NOW, entry_price=100.0)
    await store.save(fresh)
    loaded = await store.load()

    assert loaded.enabled is True
    assert loaded.position_entries["NVDA"].entry_price == 100.0
    await store.close()
    assert fake.closed is True


@pytest.mark.asyncio
async def test_redis_store_recovers_from_garbage() -> None:
    store = RedisStateStore(redis_client=FakeRedis(stored="{not json"), key="state")
    assert (await store.load()).config == AgentConfig()

    store = RedisStateStore(redis_client=FakeRedis(stored=json.dumps([1, 2])), key="state")
    assert (await store.load()).enabled is False


@pytest.mark.asyncio
async def test_redis_store_unreachable_raises_provider_unavailable() -> None:
    store = RedisStateStore(redis_client=FakeRedis(fail=True), key="state")
    with pytest.raises(ProviderUnavailable):
        await store.load()
    with pytest.raises(ProviderUnavailable):
        await store.save(AgentState())
