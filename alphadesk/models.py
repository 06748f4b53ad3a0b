"""Pydantic data model for signals, alpha, research, positions, and collaborator payloads."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Verdict = Literal["BUY", "SKIP", "WAIT"]
EntryQuality = Literal["excellent", "good", "fair", "poor"]
PlanAction = Literal["BUY", "SELL", "HOLD"]
ReviewAction = Literal["HOLD", "SELL", "ADD"]
RiskLevel = Literal["low", "medium", "high"]


# ── Collaborator payloads ─────────────────────────────────────────────

class SocialPost(BaseModel):
    """One raw mention from any social source.

    ``label`` is the author-supplied Bullish/Bearish tag on stream venues;
    ``followers``/``likes``/``retweets`` are only set by short-post venues.
    """

    text: str = ""
    created_at: float = 0.0
    source: str = ""
    source_detail: str = ""
    author: str = ""
    upvotes: int = 0
    comments: int = 0
    flair: str | None = None
    label: str | None = None
    followers: int = 0
    likes: int = 0
    retweets: int = 0
    symbol: str | None = None


class Trade(BaseModel):
    price: float = 0.0
    timestamp: float = 0.0


class Quote(BaseModel):
    bid_price: float = 0.0
    ask_price: float = 0.0


class Bar(BaseModel):
    timestamp: float = 0.0
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0
    volume: float = 0.0


class Snapshot(BaseModel):
    symbol: str
    latest_trade: Trade | None = None
    latest_quote: Quote | None = None
    daily_bar: Bar | None = None
    prev_daily_bar: Bar | None = None


class Account(BaseModel):
    cash: float = 0.0
    equity: float = 0.0
    buying_power: float = 0.0


class Position(BaseModel):
    symbol: str
    qty: float = 0.0
    side: str = "long"
    asset_class: str = "us_equity"
    market_value: float = 0.0
    unrealized_pl: float = 0.0
    current_price: float = 0.0
    avg_entry_price: float = 0.0

    @property
    def is_option(self) -> bool:
        return self.asset_class == "us_option"

    @property
    def is_crypto(self) -> bool:
        return self.asset_class == "crypto"


class MarketClock(BaseModel):
    is_open: bool = False
    timestamp: float = 0.0


class Asset(BaseModel):
    symbol: str
    asset_class: str = "us_equity"
    exchange: str = ""
    status: str = "active"
    tradable: bool = True


class OrderSpec(BaseModel):
    symbol: str
    side: Literal["buy", "sell"] = "buy"
    type: Literal["market", "limit"] = "market"
    time_in_force: Literal["day", "gtc"] = "day"
    notional: float | None = None
    qty: float | None = None
    limit_price: float | None = None


class Order(BaseModel):
    id: str = ""
    symbol: str
    status: str = "accepted"


class OptionContract(BaseModel):
    symbol: str
    strike: float = 0.0


class OptionChain(BaseModel):
    calls: list[OptionContract] = Field(default_factory=list)
    puts: list[OptionContract] = Field(default_factory=list)


class OptionSnapshot(BaseModel):
    symbol: str
    delta: float | None = None
    bid_price: float = 0.0
    ask_price: float = 0.0


class SelectedContract(BaseModel):
    symbol: str
    strike: float
    expiration: str
    delta: float
    mid_price: float
    max_contracts: int


class JudgeResponse(BaseModel):
    """What a judge call returns before any parsing."""

    content: str = ""
    model: str = ""
    tokens_in: int = 0
    tokens_out: int = 0


# ── Signals ───────────────────────────────────────────────────────────

class Signal(BaseModel):
    """Per-cycle, per-symbol, per-source sentiment reading. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    source: str
    source_detail: str
    raw_sentiment: float = Field(ge=-1, le=1)
    sentiment: float = Field(ge=-1, le=1)
    volume: float = Field(0.0, ge=0)
    freshness: float = Field(1.0, ge=0, le=1)
    source_weight: float = Field(1.0, ge=0)
    reason: str = ""
    is_crypto: bool = False
    momentum: float | None = None
    price: float | None = None
    upvotes: int = 0
    comments: int = 0
    bullish: int = 0
    bearish: int = 0
    sources: list[str] = Field(default_factory=list)
    best_flair: str | None = None


class SocialHistoryEntry(BaseModel):
    timestamp: float
    volume: float = 0.0
    sentiment: float = 0.0


# ── Alpha ─────────────────────────────────────────────────────────────

class AggregatedMarket(BaseModel):
    symbol: str
    is_crypto: bool = False
    sentiment_avg: float = 0.0
    momentum_avg: float | None = None


class AlphaCandidate(BaseModel):
    symbol: str
    is_crypto: bool = False
    notional_volume: float = 0.0
    spread_pct: float | None = None
    implied_prob: float = Field(0.5, ge=0, le=1)
    calculated_prob: float = Field(0.5, ge=0, le=1)
    alpha: float = Field(0.0, ge=-1, le=1)


class AlphaScanState(BaseModel):
    updated_at: float = 0.0
    total: int = 0
    volume_pass: int = 0
    liquidity_pass: int = 0
    edge_pass: int = 0
    edge_candidates: list[AlphaCandidate] = Field(default_factory=list)
    top_alpha: list[AlphaCandidate] = Field(default_factory=list)


# ── Research ──────────────────────────────────────────────────────────

class ResearchVerdict(BaseModel):
    symbol: str
    verdict: Verdict
    confidence: float = Field(ge=0, le=1)
    entry_quality: EntryQuality = "fair"
    reasoning: str = ""
    red_flags: list[str] = Field(default_factory=list)
    catalysts: list[str] = Field(default_factory=list)
    timestamp: float = 0.0


class Unparseable(BaseModel):
    """Judge output that could not be read; treated as no verdict."""

    symbol: str
    reason: str
    raw: str = ""


class PositionReview(BaseModel):
    symbol: str
    recommendation: ReviewAction = "HOLD"
    risk_level: RiskLevel = "medium"
    reasoning: str = ""
    key_factors: list[str] = Field(default_factory=list)
    timestamp: float = 0.0


class PlanRecommendation(BaseModel):
    action: PlanAction
    symbol: str
    confidence: float = Field(0.0, ge=0, le=1)
    reasoning: str = ""
    suggested_size_pct: float | None = None


class AnalystPlan(BaseModel):
    recommendations: list[PlanRecommendation] = Field(default_factory=list)
    market_summary: str = ""
    high_conviction: list[str] = Field(default_factory=list)


class PremarketPlan(AnalystPlan):
    timestamp: float
    researched_buys: list[ResearchVerdict] = Field(default_factory=list)


class Highlight(BaseModel):
    author: str = ""
    text: str = ""
    likes: int = 0


class ConfirmationResult(BaseModel):
    symbol: str
    sentiment: float = Field(0.0, ge=-1, le=1)
    confirms_existing: bool = False
    sample_count: int = 0
    highlights: list[Highlight] = Field(default_factory=list)
    timestamp: float = 0.0


class BreakingNewsItem(BaseModel):
    symbol: str
    headline: str
    author: str = ""
    age_minutes: float = 0.0
    is_breaking: bool = False


# ── Positions ─────────────────────────────────────────────────────────

class PositionEntry(BaseModel):
    """Bookkeeping for one held symbol. ``entry_price == 0`` means pending backfill."""

    symbol: str
    entry_time: float
    entry_price: float = 0.0
    entry_sentiment: float = 0.0
    entry_social_volume: float = 0.0
    entry_sources: list[str] = Field(default_factory=list)
    entry_reason: str = ""
    peak_price: float = 0.0
    peak_sentiment: float = 0.0

    @property
    def price_pending(self) -> bool:
        return self.entry_price <= 0


class StalenessScore(BaseModel):
    score: float = Field(0.0, ge=0, le=100)
    is_stale: bool = False
    reason: str = ""
    hold_days: float = 0.0
    pnl_pct: float | None = None
    volume_ratio: float = 1.0


class ExitDecision(BaseModel):
    symbol: str
    kind: Literal["take_profit", "stop_loss", "stale", "sentiment"]
    reason: str
    pnl_pct: float | None = None


# ── Bookkeeping ───────────────────────────────────────────────────────

class CostTracker(BaseModel):
    total_usd: float = 0.0
    calls: int = 0
    tokens_in: int = 0
    tokens_out: int = 0

    def add(self, cost_usd: float, tokens_in: int, tokens_out: int) -> None:
        self.total_usd += cost_usd
        self.calls += 1
        self.tokens_in += tokens_in
        self.tokens_out += tokens_out


class CryptoUniverse(BaseModel):
    symbols: list[str] = Field(default_factory=list)
    updated_at: float = 0.0


class Notification(BaseModel):
    kind: Literal["signal", "research", "trade", "breaking"]
    symbol: str
    title: str
    details: dict[str, Any] = Field(default_factory=dict)
