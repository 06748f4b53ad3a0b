from __future__ import annotations

import pytest

from alphadesk.config import CONFIG_VERSION, AgentConfig, Settings, merge_config
from alphadesk.errors import ConfigError


def test_defaults_validate() -> None:
    cfg = AgentConfig()
    assert cfg.version == CONFIG_VERSION
    assert cfg.stale_mid_hold_days < cfg.stale_max_hold_days
    assert cfg.alpha_min_edge <= cfg.alpha_edge_threshold


def test_merge_layers_overrides_over_stored() -> None:
    stored = AgentConfig(max_positions=7).model_dump()
    merged = merge_config(stored, {"take_profit_pct": 12.5})
    assert merged.max_positions == 7
    assert merged.take_profit_pct == 12.5


def test_merge_migrates_old_documents() -> None:
    merged = merge_config({"version": 0, "max_positions": 3, "legacy_knob": True})
    assert merged.version == CONFIG_VERSION
    assert merged.max_positions == 3


def test_merge_rejects_out_of_range_and_unknown_overrides() -> None:
    with pytest.raises(ConfigError):
        merge_config(None, {"stop_loss_pct": 150})
    with pytest.raises(ConfigError):
        merge_config(None, {"not_a_field": 1})
    with pytest.raises(ConfigError):
        merge_config(None, {"stale_mid_hold_days": 5, "stale_max_hold_days": 3})
    # retired knob
    with pytest.raises(ConfigError):
        merge_config(None, {"sell_sentiment_threshold": -0.3})


def test_symbol_lists_are_normalized() -> None:
    cfg = merge_config(None, {"crypto_symbols": ["btc/usd", " BTC/USD ", "eth/usd", ""], "allowed_exchanges": ["nasdaq"]})
    assert cfg.crypto_symbols == ["BTC/USD", "ETH/USD"]
    assert cfg.allowed_exchanges == ["NASDAQ"]
    assert merge_config(None, {"allowed_exchanges": [" "]}).allowed_exchanges is None


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALPHADESK_LLM_API_KEY", "sk-test")
    monkeypatch.setenv("ALPHADESK_WAKE_INTERVAL_SECONDS", "45")
    settings = Settings(_env_file=None)
    assert settings.llm_enabled is True
    assert settings.wake_interval_seconds == 45.0
