"""In-memory collaborators for ``--mock`` runs and tests.

Every fake is deterministic given its constructor arguments; a seeded
``random.Random`` only shapes the generated demo data in ``build_mock_collaborators``.
"""

from __future__ import annotations

import json
import logging
import random
import uuid
from typing import Any

from alphadesk.errors import OrderRejected, ProviderUnavailable
from alphadesk.models import (
    Account,
    Asset,
    Bar,
    JudgeResponse,
    MarketClock,
    Notification,
    OptionChain,
    OptionSnapshot,
    Order,
    OrderSpec,
    Position,
    Quote,
    Snapshot,
    SocialPost,
    Trade,
)
from alphadesk.providers.base import (
    BrokerageProvider,
    Collaborators,
    CryptoRankingProvider,
    LLMJudge,
    MarketDataProvider,
    NotificationSink,
    OptionsDataProvider,
    SocialFeedProvider,
)
from alphadesk.symbols import normalize_symbol, symbol_variants
from alphadesk.utils import now_ts

logger = logging.getLogger(__name__)

_DEMO_EQUITIES = ["AAPL", "NVDA", "TSLA", "AMD", "PLTR", "SOFI", "GME", "MSFT"]
_DEMO_CRYPTO = ["BTC/USD", "ETH/USD", "SOL/USD", "DOGE/USD"]
_BULLISH_TEMPLATES = [
    "${sym} calls printing, breakout incoming",
    "Loading more ${sym}, this is going to moon",
    "${sym} earnings beat, bullish into next week",
]
_BEARISH_TEMPLATES = [
    "${sym} looks overvalued, buying puts",
    "Dumping ${sym}, downgrade coming",
]


class MockMarketData(MarketDataProvider):
    def __init__(
        self,
        snapshots: dict[str, Snapshot] | None = None,
        bars: dict[str, list[Bar]] | None = None,
        quotes: dict[str, Quote] | None = None,
        fail: set[str] | None = None,
    ) -> None:
        self.snapshots = {normalize_symbol(k): v for k, v in (snapshots or {}).items()}
        self.bars = {normalize_symbol(k): v for k, v in (bars or {}).items()}
        self.quotes = {normalize_symbol(k): v for k, v in (quotes or {}).items()}
        self.fail = fail or set()
        self.calls: list[tuple[str, str]] = []

    def _check(self, what: str, symbol: str) -> None:
        self.calls.append((what, symbol))
        if symbol in self.fail:
            raise ProviderUnavailable(f"mock/{what}/{symbol}", "forced failure")

    async def get_snapshot(self, symbol: str) -> Snapshot | None:
        self._check("snapshot", normalize_symbol(symbol))
        return self.snapshots.get(normalize_symbol(symbol))

    async def get_bars(self, symbol: str, timeframe: str, limit: int) -> list[Bar]:
        self._check("bars", normalize_symbol(symbol))
        return list(self.bars.get(normalize_symbol(symbol), []))[-limit:]

    async def get_quote(self, symbol: str) -> Quote | None:
        self._check("quote", normalize_symbol(symbol))
        return self.quotes.get(normalize_symbol(symbol))


class MockBrokerage(BrokerageProvider):
    """Records orders and closes. Buys do not open positions unless ``fill_orders`` is set."""

    def __init__(
        self,
        account: Account | None = None,
        positions: list[Position] | None = None,
        assets: dict[str, Asset] | None = None,
        is_open: bool = True,
        reject: set[str] | None = None,
        close_fails: set[str] | None = None,
        fill_orders: bool = False,
    ) -> None:
        self.account = account or Account(cash=25_000.0, equity=50_000.0, buying_power=50_000.0)
        self.positions = list(positions or [])
        self.assets = {normalize_symbol(k): v for k, v in (assets or {}).items()}
        self.is_open = is_open
        self.reject = reject or set()
        self.close_fails = close_fails or set()
        self.fill_orders = fill_orders
        self.orders: list[OrderSpec] = []
        self.closed: list[str] = []
        self.close_attempts: list[str] = []

    async def get_account(self) -> Account:
        return self.account

    async def get_positions(self) -> list[Position]:
        return list(self.positions)

    async def get_clock(self) -> MarketClock:
        return MarketClock(is_open=self.is_open, timestamp=now_ts())

    async def create_order(self, spec: OrderSpec) -> Order:
        if normalize_symbol(spec.symbol) in self.reject:
            raise OrderRejected(spec.symbol, "insufficient buying power")
        self.orders.append(spec)
        if self.fill_orders and spec.notional:
            self.positions.append(
                Position(
                    symbol=spec.symbol,
                    qty=1,
                    asset_class="crypto" if "/" in spec.symbol else "us_equity",
                    market_value=spec.notional,
                    current_price=spec.notional,
                    avg_entry_price=spec.notional,
                )
            )
        return Order(id=uuid.uuid4().hex, symbol=spec.symbol, status="accepted")

    async def close_position(self, symbol: str) -> Order:
        target = normalize_symbol(symbol)
        self.close_attempts.append(target)
        if target in self.close_fails:
            raise ProviderUnavailable(f"mock/close/{target}", "forced failure")
        held = next((p for p in self.positions if normalize_symbol(p.symbol) == target), None)
        if held is None:
            raise OrderRejected(target, "position not found")
        self.positions.remove(held)
        self.closed.append(target)
        return Order(id=uuid.uuid4().hex, symbol=target, status="accepted")

    async def get_asset(self, symbol: str) -> Asset | None:
        return self.assets.get(normalize_symbol(symbol))

    async def list_assets(self, *, status: str = "active", asset_class: str = "us_equity") -> list[Asset]:
        return [a for a in self.assets.values() if a.status == status and a.asset_class == asset_class]


class MockSocialFeed(SocialFeedProvider):
    def __init__(
        self,
        trending: dict[str, list[str]] | None = None,
        posts: dict[tuple[str, str], list[SocialPost]] | None = None,
        fail_sources: set[str] | None = None,
    ) -> None:
        self.trending = trending or {}
        self.posts = posts or {}
        self.fail_sources = fail_sources or set()
        self.queries: list[tuple[str, str]] = []

    async def fetch_trending(self, source: str) -> list[str]:
        if source in self.fail_sources:
            raise ProviderUnavailable(f"mock/{source}", "forced failure")
        return list(self.trending.get(source, []))

    async def fetch_recent(self, query: str, source: str, limit: int = 25) -> list[SocialPost]:
        self.queries.append((source, query))
        if source in self.fail_sources:
            raise ProviderUnavailable(f"mock/{source}", "forced failure")
        key = (source, query if source != "stocktwits" else normalize_symbol(query))
        return list(self.posts.get(key, []))[:limit]


class MockJudge(LLMJudge):
    """Replies from a symbol -> payload table; unknown symbols get ``default``."""

    def __init__(
        self,
        verdicts: dict[str, dict[str, Any]] | None = None,
        analyst: dict[str, Any] | None = None,
        default: dict[str, Any] | None = None,
        raw: str | None = None,
    ) -> None:
        self.verdicts = {normalize_symbol(k): v for k, v in (verdicts or {}).items()}
        self.analyst = analyst or {"recommendations": [], "market_summary": "quiet", "high_conviction_plays": []}
        self.default = default or {"verdict": "SKIP", "confidence": 0.3, "entry_quality": "fair", "reasoning": "no edge"}
        self.raw = raw
        self.prompts: list[str] = []

    async def evaluate(self, system_prompt: str, user_prompt: str, *, model: str, max_tokens: int) -> JudgeResponse:
        self.prompts.append(user_prompt)
        if self.raw is not None:
            content = self.raw
        elif user_prompt.startswith("Current Time:"):
            content = json.dumps(self.analyst)
        elif user_prompt.startswith("Analyze this position"):
            content = json.dumps({"recommendation": "HOLD", "risk_level": "low", "reasoning": "steady", "key_factors": []})
        else:
            symbol = next(
                (line.split(":", 1)[1].strip() for line in user_prompt.splitlines() if line.startswith("SYMBOL:")),
                "",
            )
            content = json.dumps(self.verdicts.get(normalize_symbol(symbol), self.default))
        return JudgeResponse(content=content, model=model, tokens_in=400, tokens_out=120)


class MockNotifier(NotificationSink):
    def __init__(self) -> None:
        self.events: list[Notification] = []

    async def notify(self, event: Notification) -> None:
        self.events.append(event)
        logger.info("[mock_notify] %s %s", event.kind, event.title)


class MockOptions(OptionsDataProvider):
    def __init__(
        self,
        expirations: dict[str, list[str]] | None = None,
        chains: dict[tuple[str, str], OptionChain] | None = None,
        snapshots: dict[str, OptionSnapshot] | None = None,
    ) -> None:
        self.expirations = expirations or {}
        self.chains = chains or {}
        self.snapshots = snapshots or {}

    async def get_expirations(self, underlying: str) -> list[str]:
        return list(self.expirations.get(normalize_symbol(underlying), []))

    async def get_chain(self, underlying: str, expiration: str) -> OptionChain | None:
        return self.chains.get((normalize_symbol(underlying), expiration))

    async def get_snapshot(self, contract_symbol: str) -> OptionSnapshot | None:
        return self.snapshots.get(contract_symbol)


class MockCryptoRanking(CryptoRankingProvider):
    name = "mock"

    def __init__(self, symbols: list[str] | None = None) -> None:
        self.symbols = symbols or []

    async def top_symbols(self, limit: int) -> list[str]:
        return self.symbols[:limit]


def _demo_snapshot(symbol: str, rng: random.Random, now: float) -> Snapshot:
    prev = rng.uniform(5, 500)
    close = prev * (1 + rng.uniform(-0.05, 0.08))
    spread = close * 0.0005
    return Snapshot(
        symbol=symbol,
        latest_trade=Trade(price=close, timestamp=now),
        latest_quote=Quote(bid_price=close - spread, ask_price=close + spread),
        daily_bar=Bar(timestamp=now, open=prev, high=close * 1.01, low=prev * 0.99, close=close, volume=rng.uniform(2e5, 5e7)),
        prev_daily_bar=Bar(timestamp=now - 86_400, close=prev, volume=rng.uniform(2e5, 5e7)),
    )


def _demo_bars(rng: random.Random, now: float, count: int = 60) -> list[Bar]:
    price = rng.uniform(20, 300)
    out: list[Bar] = []
    for i in range(count):
        price *= 1 + rng.gauss(0.001, 0.02)
        out.append(Bar(timestamp=now - (count - i) * 86_400, close=price, volume=rng.uniform(1e6, 2e7)))
    return out


def build_mock_collaborators(seed: int = 7) -> Collaborators:
    """A self-contained demo market: trending equities, a few crypto pairs, a scripted judge."""
    rng = random.Random(seed)
    now = now_ts()

    posts: dict[tuple[str, str], list[SocialPost]] = {}
    for sub in ("wallstreetbets", "stocks", "investing", "options"):
        batch = []
        for _ in range(12):
            sym = rng.choice(_DEMO_EQUITIES)
            template = rng.choice(_BULLISH_TEMPLATES if rng.random() < 0.7 else _BEARISH_TEMPLATES)
            batch.append(
                SocialPost(
                    text=template.replace("{sym}", sym),
                    created_at=now - rng.uniform(0, 7200),
                    source="reddit",
                    source_detail=f"reddit_{sub}",
                    upvotes=rng.randint(5, 2000),
                    comments=rng.randint(0, 300),
                    flair=rng.choice([None, "DD", "Discussion", "YOLO"]),
                )
            )
        posts[("reddit", sub)] = batch
    for sym in _DEMO_EQUITIES:
        posts[("stocktwits", sym)] = [
            SocialPost(
                text=f"${sym} to the moon",
                created_at=now - rng.uniform(0, 3600),
                source="stocktwits",
                label="Bullish" if rng.random() < 0.65 else "Bearish",
            )
            for _ in range(8)
        ]

    snapshots = {s: _demo_snapshot(s, rng, now) for s in _DEMO_EQUITIES + _DEMO_CRYPTO}
    bars = {s: _demo_bars(rng, now) for s in _DEMO_EQUITIES}
    assets = {s: Asset(symbol=s, asset_class="us_equity", exchange="NASDAQ") for s in _DEMO_EQUITIES}
    for s in _DEMO_CRYPTO:
        assets[s] = Asset(symbol=s, asset_class="crypto", exchange="CRYPTO")
        for variant in symbol_variants(s)[1:]:
            assets.setdefault(variant, assets[s])

    verdicts = {
        s: {"verdict": "BUY", "confidence": rng.uniform(0.6, 0.9), "entry_quality": "good", "reasoning": "momentum"}
        for s in _DEMO_EQUITIES[:3]
    }
    logger.info("[mock] demo collaborators built equities=%d crypto=%d", len(_DEMO_EQUITIES), len(_DEMO_CRYPTO))
    return Collaborators(
        market_data=MockMarketData(snapshots=snapshots, bars=bars, quotes={s: snapshots[s].latest_quote for s in snapshots}),
        brokerage=MockBrokerage(assets=assets, fill_orders=True),
        social=MockSocialFeed(trending={"stocktwits": list(_DEMO_EQUITIES)}, posts=posts),
        judge=MockJudge(verdicts=verdicts),
        notifier=MockNotifier(),
        crypto_ranking=MockCryptoRanking(["BTC", "ETH", "SOL", "DOGE"]),
    )
