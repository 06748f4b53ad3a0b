"""Judge prompts and typed parsing of judge output.

The judge answers in free text that is supposed to hold one JSON object.
Parsing never raises: anything unreadable comes back as ``Unparseable`` so
callers branch on a closed set of outcomes.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from alphadesk.config import AgentConfig
from alphadesk.errors import JudgeParseError
from alphadesk.models import (
    Account,
    AnalystPlan,
    JudgeResponse,
    PlanRecommendation,
    Position,
    PositionReview,
    ResearchVerdict,
    Signal,
    Unparseable,
)
from alphadesk.positions.lifecycle import position_pl_pct
from alphadesk.providers.base import LLMJudge
from alphadesk.symbols import normalize_symbol
from alphadesk.utils import clamp, guarded_call, safe_float

logger = logging.getLogger(__name__)

R = TypeVar("R")

SIGNAL_SYSTEM = "You are a stock research analyst. Be skeptical of hype. Output valid JSON only."
POSITION_SYSTEM = "You are a position risk analyst. Be concise. Output valid JSON only."
ANALYST_SYSTEM = """You are a senior trading analyst AI. Make the FINAL trading decisions based on social sentiment signals.

Rules:
- Only recommend BUY for symbols with strong conviction from multiple data points
- Recommend SELL for positions with deteriorating sentiment or hitting targets
- Consider the QUALITY of sentiment, not just quantity
- Output valid JSON only

Response format:
{
  "recommendations": [
    { "action": "BUY"|"SELL"|"HOLD", "symbol": "TICKER", "confidence": 0.0-1.0, "reasoning": "detailed reasoning", "suggested_size_pct": 10-30 }
  ],
  "market_summary": "overall market read and sentiment",
  "high_conviction_plays": ["symbols you feel strongest about"]
}"""

SIGNAL_MAX_TOKENS = 250
POSITION_MAX_TOKENS = 200
ANALYST_MAX_TOKENS = 800
ANALYST_CANDIDATES = 10
ANALYST_RAW_SIGNALS = 20

_FENCE_RE = re.compile(r"```(?:json)?\s*|```")
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

_VERDICTS = {"BUY", "SKIP", "WAIT"}
_QUALITIES = {"excellent", "good", "fair", "poor"}
_REVIEWS = {"HOLD", "SELL", "ADD"}
_RISKS = {"low", "medium", "high"}
_PLAN_ACTIONS = {"BUY", "SELL", "HOLD"}


# ── parsing ───────────────────────────────────────────────────────────

def extract_json_object(raw: str) -> dict[str, Any]:
    """Pull the first JSON object out of judge text, tolerating code fences and chatter."""
    text = _FENCE_RE.sub("", raw or "").strip()
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    match = _OBJECT_RE.search(text)
    if match:
        try:
            data = json.loads(match.group())
            if isinstance(data, dict):
                return data
        except json.JSONDecodeError:
            pass
    raise JudgeParseError("no JSON object in judge response")


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


def _confidence(value: Any) -> float:
    if value is None or isinstance(value, bool):
        raise JudgeParseError(f"bad confidence {value!r}")
    out = safe_float(value, default=math.nan)
    if math.isnan(out):
        raise JudgeParseError(f"bad confidence {value!r}")
    return clamp(out, 0.0, 1.0)


def parse_verdict(symbol: str, raw: str, now: float) -> ResearchVerdict | Unparseable:
    try:
        data = extract_json_object(raw)
        verdict = str(data.get("verdict", "")).strip().upper()
        if verdict not in _VERDICTS:
            raise JudgeParseError(f"unknown verdict {data.get('verdict')!r}")
        quality = str(data.get("entry_quality", "")).strip().lower()
        return ResearchVerdict(
            symbol=symbol,
            verdict=verdict,
            confidence=_confidence(data.get("confidence")),
            entry_quality=quality if quality in _QUALITIES else "poor",
            reasoning=str(data.get("reasoning") or ""),
            red_flags=_str_list(data.get("red_flags")),
            catalysts=_str_list(data.get("catalysts")),
            timestamp=now,
        )
    except JudgeParseError as exc:
        logger.warning("[research] %s unparseable verdict: %s", symbol, exc)
        return Unparseable(symbol=symbol, reason=str(exc), raw=(raw or "")[:500])


def parse_position_review(symbol: str, raw: str, now: float) -> PositionReview | Unparseable:
    try:
        data = extract_json_object(raw)
        rec = str(data.get("recommendation", "")).strip().upper()
        if rec not in _REVIEWS:
            raise JudgeParseError(f"unknown recommendation {data.get('recommendation')!r}")
        risk = str(data.get("risk_level", "")).strip().lower()
        return PositionReview(
            symbol=symbol,
            recommendation=rec,
            risk_level=risk if risk in _RISKS else "medium",
            reasoning=str(data.get("reasoning") or ""),
            key_factors=_str_list(data.get("key_factors")),
            timestamp=now,
        )
    except JudgeParseError as exc:
        logger.warning("[position_research] %s unparseable review: %s", symbol, exc)
        return Unparseable(symbol=symbol, reason=str(exc), raw=(raw or "")[:500])


def parse_analyst_plan(raw: str) -> AnalystPlan | Unparseable:
    """Malformed individual recommendations are dropped; a missing object is Unparseable."""
    try:
        data = extract_json_object(raw)
    except JudgeParseError as exc:
        logger.warning("[analyst] unparseable plan: %s", exc)
        return Unparseable(symbol="*", reason=str(exc), raw=(raw or "")[:500])

    recs: list[PlanRecommendation] = []
    for item in data.get("recommendations") or []:
        if not isinstance(item, dict):
            continue
        action = str(item.get("action", "")).strip().upper()
        symbol = normalize_symbol(str(item.get("symbol") or ""))
        if action not in _PLAN_ACTIONS or not symbol:
            continue
        try:
            confidence = _confidence(item.get("confidence"))
        except JudgeParseError:
            continue
        size = item.get("suggested_size_pct")
        recs.append(
            PlanRecommendation(
                action=action,
                symbol=symbol,
                confidence=confidence,
                reasoning=str(item.get("reasoning") or ""),
                suggested_size_pct=safe_float(size) if size is not None else None,
            )
        )
    return AnalystPlan(
        recommendations=recs,
        market_summary=str(data.get("market_summary") or ""),
        high_conviction=[normalize_symbol(s) for s in _str_list(data.get("high_conviction_plays"))],
    )


# ── prompts ───────────────────────────────────────────────────────────

def signal_prompt(symbol: str, sentiment: float, sources: list[str], price: float, is_crypto: bool) -> str:
    kind = "crypto" if is_crypto else "stock"
    price_line = f"${price}" if price > 0 else "unavailable"
    return f"""Should we BUY this {kind} based on social sentiment and fundamentals?

SYMBOL: {symbol}
SENTIMENT: {sentiment * 100:.0f}% bullish (sources: {', '.join(sources)})

CURRENT DATA:
- Price: {price_line}

Evaluate if this is a good entry. Consider: Is the sentiment justified? Is it too late (already pumped)? Any red flags?

JSON response:
{{
  "verdict": "BUY|SKIP|WAIT",
  "confidence": 0.0-1.0,
  "entry_quality": "excellent|good|fair|poor",
  "reasoning": "brief reason",
  "red_flags": ["any concerns"],
  "catalysts": ["positive factors"]
}}"""


def position_prompt(position: Position) -> str:
    return f"""Analyze this position for risk and opportunity:

POSITION: {position.symbol}
- Shares: {position.qty}
- Market Value: ${position.market_value:.2f}
- P&L: ${position.unrealized_pl:.2f} ({position_pl_pct(position):.1f}%)
- Current Price: ${position.current_price}

Provide a brief risk assessment and recommendation (HOLD, SELL, or ADD). JSON format:
{{
  "recommendation": "HOLD|SELL|ADD",
  "risk_level": "low|medium|high",
  "reasoning": "brief reason",
  "key_factors": ["factor1", "factor2"]
}}"""


@dataclass
class AnalystCandidate:
    symbol: str
    sources: list[str]
    avg_sentiment: float


def analyst_candidates(signals: list[Signal], min_sentiment: float) -> list[AnalystCandidate]:
    """Per-symbol mean sentiment at or above half the entry threshold, top 10."""
    grouped: dict[str, tuple[list[str], float, int]] = {}
    for sig in signals:
        sources, total, count = grouped.get(sig.symbol, ([], 0.0, 0))
        sources.append(sig.source)
        grouped[sig.symbol] = (sources, total + sig.sentiment, count + 1)
    out = [
        AnalystCandidate(symbol=s, sources=src, avg_sentiment=total / count)
        for s, (src, total, count) in grouped.items()
    ]
    out = [c for c in out if c.avg_sentiment >= min_sentiment * 0.5]
    out.sort(key=lambda c: c.avg_sentiment, reverse=True)
    return out[:ANALYST_CANDIDATES]


def analyst_prompt(
    candidates: list[AnalystCandidate],
    signals: list[Signal],
    positions: list[Position],
    account: Account,
    config: AgentConfig,
    now: float,
) -> str:
    held = {p.symbol for p in positions}
    position_lines = (
        "\n".join(
            f"- {p.symbol}: {p.qty} shares, P&L: ${p.unrealized_pl:.2f} ({position_pl_pct(p):.1f}%)"
            for p in positions
        )
        or "None"
    )
    candidate_lines = "\n".join(
        f"- {c.symbol}: avg sentiment {c.avg_sentiment * 100:.0f}%, sources: {', '.join(c.sources)}, "
        f"{'[CURRENTLY HELD]' if c.symbol in held else '[NOT HELD]'}"
        for c in candidates
    )
    signal_lines = "\n".join(f"- {s.symbol} ({s.source}): {s.reason}" for s in signals[:ANALYST_RAW_SIGNALS])
    stamp = datetime.fromtimestamp(now, tz=timezone.utc).isoformat()
    return f"""Current Time: {stamp}

ACCOUNT STATUS:
- Equity: ${account.equity:.2f}
- Cash: ${account.cash:.2f}
- Current Positions: {len(positions)}/{config.max_positions}

CURRENT POSITIONS:
{position_lines}

TOP SENTIMENT CANDIDATES:
{candidate_lines}

RAW SIGNALS (top {ANALYST_RAW_SIGNALS}):
{signal_lines}

TRADING RULES:
- Max position size: ${config.max_position_value}
- Take profit target: {config.take_profit_pct}%
- Stop loss: {config.stop_loss_pct}%
- Min confidence to trade: {config.min_analyst_confidence}

Analyze and provide BUY/SELL/HOLD recommendations:"""


# ── judge session ─────────────────────────────────────────────────────

@dataclass
class JudgeOutcome(Generic[R]):
    result: R | Unparseable
    usage: JudgeResponse


class JudgeSession:
    """Issues judge calls under a timeout and returns parsed outcomes plus usage.

    Nothing here touches state; the caller records cost and caches results.
    """

    def __init__(self, judge: LLMJudge, config: AgentConfig, timeout: float) -> None:
        self.judge = judge
        self.config = config
        self.timeout = timeout

    async def _ask(self, system: str, user: str, model: str, max_tokens: int, what: str) -> JudgeResponse:
        return await guarded_call(
            self.judge.evaluate(system, user, model=model, max_tokens=max_tokens),
            self.timeout,
            what,
        )

    async def research_signal(
        self,
        symbol: str,
        sentiment: float,
        sources: list[str],
        price: float,
        is_crypto: bool,
        now: float,
    ) -> JudgeOutcome[ResearchVerdict]:
        usage = await self._ask(
            SIGNAL_SYSTEM,
            signal_prompt(symbol, sentiment, sources, price, is_crypto),
            self.config.llm_model,
            min(SIGNAL_MAX_TOKENS, self.config.llm_max_tokens),
            f"judge/research/{symbol}",
        )
        return JudgeOutcome(parse_verdict(symbol, usage.content, now), usage)

    async def review_position(self, position: Position, now: float) -> JudgeOutcome[PositionReview]:
        usage = await self._ask(
            POSITION_SYSTEM,
            position_prompt(position),
            self.config.llm_model,
            min(POSITION_MAX_TOKENS, self.config.llm_max_tokens),
            f"judge/position/{position.symbol}",
        )
        return JudgeOutcome(parse_position_review(position.symbol, usage.content, now), usage)

    async def analyze_signals(
        self,
        candidates: list[AnalystCandidate],
        signals: list[Signal],
        positions: list[Position],
        account: Account,
        now: float,
    ) -> JudgeOutcome[AnalystPlan]:
        usage = await self._ask(
            ANALYST_SYSTEM,
            analyst_prompt(candidates, signals, positions, account, self.config, now),
            self.config.llm_analyst_model,
            ANALYST_MAX_TOKENS,
            "judge/analyst",
        )
        return JudgeOutcome(parse_analyst_plan(usage.content), usage)
