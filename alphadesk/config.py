"""Centralized configuration.

Two layers:

* ``Settings``: process-level values loaded from the environment / ``.env``
  via pydantic-settings (credentials, Redis, wake cadence).
* ``AgentConfig``: the versioned trading tunables persisted with the agent
  state. Every field carries an explicit range; ``merge_config`` is the only
  way to layer overrides over a stored config and it re-validates the result.
"""

from __future__ import annotations

import functools
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from alphadesk.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_VERSION = 1


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ALPHADESK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── LLM judge ──────────────────────────────────────────────────────
    llm_provider: str = "openai"
    llm_api_key: str = ""
    llm_base_url: str = "https://api.openai.com/v1"

    # ── Infrastructure ─────────────────────────────────────────────────
    redis_url: str = "redis://localhost:6379/0"
    state_key: str = "alphadesk:state"

    # ── Collaborators ──────────────────────────────────────────────────
    provider_factory: str = ""  # "package.module:callable" returning a Collaborators
    discord_webhook_url: str = ""
    social_confirmation_enabled: bool = False

    # ── Operational Settings ───────────────────────────────────────────
    wake_interval_seconds: float = 30.0
    call_timeout_seconds: float = 20.0
    log_level: str = "INFO"
    mock_mode: bool = False

    @property
    def llm_enabled(self) -> bool:
        return bool(self.llm_api_key.strip())


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton accessor for the global settings."""
    return Settings()


class AgentConfig(BaseModel):
    """Trading tunables. Intervals are seconds, percentages are whole percent."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    version: int = CONFIG_VERSION

    # ── Cadence ────────────────────────────────────────────────────────
    data_poll_interval_seconds: float = Field(30.0, ge=5, le=3600)
    analyst_interval_seconds: float = Field(120.0, ge=10, le=86_400)
    research_interval_seconds: float = Field(120.0, ge=10, le=86_400)
    position_research_interval_seconds: float = Field(300.0, ge=30, le=86_400)

    # ── Position limits ────────────────────────────────────────────────
    max_position_value: float = Field(5000.0, gt=0)
    max_positions: int = Field(5, ge=0, le=100)
    min_sentiment_score: float = Field(0.3, ge=0, le=1)
    min_analyst_confidence: float = Field(0.6, ge=0, le=1)
    allowed_exchanges: list[str] | None = None
    min_order_notional: float = Field(100.0, ge=0)

    # ── Take profit / stop loss / sizing ───────────────────────────────
    take_profit_pct: float = Field(10.0, gt=0, le=1000)
    stop_loss_pct: float = Field(5.0, gt=0, le=100)
    position_size_pct_of_cash: float = Field(25.0, gt=0, le=100)

    # ── Staleness ──────────────────────────────────────────────────────
    stale_position_enabled: bool = True
    stale_min_hold_hours: float = Field(24.0, ge=0, le=24 * 90)
    stale_max_hold_days: float = Field(3.0, gt=0, le=365)
    stale_min_gain_pct: float = Field(5.0, ge=0, le=1000)
    stale_mid_hold_days: float = Field(2.0, ge=0, le=365)
    stale_mid_min_gain_pct: float = Field(3.0, ge=0, le=1000)
    stale_social_volume_decay: float = Field(0.3, ge=0, le=1)
    stale_no_mentions_hours: float = Field(24.0, gt=0, le=24 * 30)

    # ── LLM ────────────────────────────────────────────────────────────
    llm_model: str = "gpt-4o-mini"
    llm_analyst_model: str = "gpt-4o"
    llm_max_tokens: int = Field(500, ge=50, le=8000)

    # ── Options ────────────────────────────────────────────────────────
    options_enabled: bool = False
    options_min_confidence: float = Field(0.8, ge=0, le=1)
    options_max_pct_per_trade: float = Field(0.02, gt=0, le=1)
    options_max_total_exposure: float = Field(0.10, gt=0, le=1)
    options_min_dte: int = Field(30, ge=0, le=1000)
    options_max_dte: int = Field(60, ge=0, le=1000)
    options_target_delta: float = Field(0.45, gt=0, le=1)
    options_min_delta: float = Field(0.30, ge=0, le=1)
    options_max_delta: float = Field(0.70, ge=0, le=1)
    options_stop_loss_pct: float = Field(50.0, gt=0, le=100)
    options_take_profit_pct: float = Field(100.0, gt=0, le=10_000)
    options_max_positions: int = Field(3, ge=0, le=50)

    # ── Crypto ─────────────────────────────────────────────────────────
    crypto_enabled: bool = False
    crypto_symbols: list[str] = Field(default_factory=lambda: ["BTC/USD", "ETH/USD", "SOL/USD"])
    crypto_momentum_threshold: float = Field(2.0, gt=0, le=100)
    crypto_max_position_value: float = Field(1000.0, gt=0)
    crypto_min_order_notional: float = Field(10.0, ge=0)
    crypto_take_profit_pct: float = Field(10.0, gt=0, le=1000)
    crypto_stop_loss_pct: float = Field(5.0, gt=0, le=100)
    crypto_min_analyst_confidence: float = Field(0.5, ge=0, le=1)
    crypto_universe_top_n: int = Field(100, ge=0, le=1000)
    crypto_universe_refresh_seconds: float = Field(300.0, ge=0, le=86_400)

    # ── Manual watchlist ───────────────────────────────────────────────
    stock_watchlist_symbols: list[str] = Field(default_factory=list)

    # ── Alpha scan ─────────────────────────────────────────────────────
    alpha_scan_enabled: bool = True
    alpha_scan_interval_seconds: float = Field(300.0, ge=0, le=86_400)
    alpha_scan_max_markets: int = Field(1000, ge=1, le=10_000)
    alpha_min_notional_volume: float = Field(1_000_000.0, ge=0)
    alpha_max_spread_pct: float = Field(0.01, gt=0, le=1)
    alpha_min_edge: float = Field(0.08, ge=0, le=1)
    alpha_edge_threshold: float = Field(0.2, ge=0, le=1)
    alpha_bars_lookback: int = Field(60, ge=2, le=1000)

    # ── Rate budgets & caches ──────────────────────────────────────────
    social_daily_read_limit: int = Field(200, ge=0, le=100_000)
    social_confirmation_min_sentiment: float = Field(0.3, ge=0, le=1)
    research_cache_ttl_seconds: float = Field(180.0, ge=0, le=86_400)
    confirmation_cache_ttl_seconds: float = Field(300.0, ge=0, le=86_400)
    notification_cooldown_seconds: float = Field(1800.0, ge=0, le=86_400)

    @field_validator("allowed_exchanges")
    @classmethod
    def _normalize_exchanges(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        cleaned = [v.strip().upper() for v in value if v and v.strip()]
        return cleaned or None

    @field_validator("crypto_symbols", "stock_watchlist_symbols")
    @classmethod
    def _normalize_symbols(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(v.strip().upper() for v in value if v and v.strip()))

    @model_validator(mode="after")
    def _check_ranges(self) -> AgentConfig:
        if self.stale_mid_hold_days >= self.stale_max_hold_days:
            raise ValueError("stale_mid_hold_days must be below stale_max_hold_days")
        if self.options_min_dte > self.options_max_dte:
            raise ValueError("options_min_dte must not exceed options_max_dte")
        if not (self.options_min_delta <= self.options_target_delta <= self.options_max_delta):
            raise ValueError("options_target_delta must lie within [options_min_delta, options_max_delta]")
        if self.alpha_min_edge > self.alpha_edge_threshold:
            raise ValueError("alpha_min_edge must not exceed alpha_edge_threshold")
        return self


def merge_config(
    stored: AgentConfig | dict[str, Any] | None,
    overrides: dict[str, Any] | None = None,
) -> AgentConfig:
    """Layer ``overrides`` over ``stored`` (itself layered over defaults).

    Stored documents from an older version are migrated by keeping only the
    fields this version knows. Overrides are strict: unknown keys or values
    outside a field's range raise ``ConfigError``.
    """
    if isinstance(stored, AgentConfig):
        base = stored.model_dump()
    else:
        base = dict(stored or {})
        known = set(AgentConfig.model_fields)
        dropped = sorted(k for k in base if k not in known)
        if dropped:
            logger.warning("[config] dropping unknown stored keys: %s", ", ".join(dropped))
        base = {k: v for k, v in base.items() if k in known}
        stored_version = base.get("version", CONFIG_VERSION)
        if stored_version != CONFIG_VERSION:
            logger.info("[config] migrating stored config v%s -> v%d", stored_version, CONFIG_VERSION)

    merged = {**base, **(overrides or {})}
    merged["version"] = CONFIG_VERSION
    try:
        return AgentConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"invalid agent config: {exc}") from exc
