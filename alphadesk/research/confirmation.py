"""Social confirmation of an existing signal, and breaking-news detection for holdings."""

from __future__ import annotations

import logging
import math

from alphadesk.models import BreakingNewsItem, ConfirmationResult, Highlight, SocialPost
from alphadesk.signals.text import count_keywords
from alphadesk.utils import clamp

logger = logging.getLogger(__name__)

CONFIRMATION_SOURCE = "twitter"
CONFIRMATION_SAMPLE = 10
ACTIONABLE_KEYWORDS = ("unusual", "flow", "sweep", "block", "whale")
BULL_WORDS = ("buy", "call", "long", "bullish", "upgrade", "beat", "squeeze", "moon", "breakout")
BEAR_WORDS = ("sell", "put", "short", "bearish", "downgrade", "miss", "crash", "dump", "breakdown")
AGREEMENT_BAND = 0.2
HIGHLIGHT_LIKES = 50
HIGHLIGHT_FOLLOWERS = 10_000
MAX_HIGHLIGHTS = 3

NEWS_ACCOUNTS = ("FirstSquawk", "DeItaone", "Newsquawk")
NEWS_SYMBOLS = 3
NEWS_SAMPLE = 5
NEWS_MAX_AGE_SECONDS = 1800.0
BREAKING_AGE_SECONDS = 600.0


def confirmation_query(symbol: str) -> str:
    return f"${symbol} ({' OR '.join(ACTIONABLE_KEYWORDS)}) -is:retweet lang:en"


def post_weight(post: SocialPost) -> float:
    """Author reach times engagement; reach saturates at 1.5, engagement at 1.3."""
    author = min(1.5, math.log10(post.followers + 1) / 5)
    engagement = min(1.3, 1 + (post.likes + post.retweets * 2) / 1000)
    return author * engagement


def score_confirmation(
    symbol: str,
    posts: list[SocialPost],
    existing_sentiment: float,
    now: float,
) -> ConfirmationResult | None:
    """Weighted bull/bear vote over short posts. None when there are no posts."""
    if not posts:
        return None

    bullish = bearish = total_weight = 0.0
    highlights: list[Highlight] = []
    for post in posts:
        weight = post_weight(post)
        vote = count_keywords(post.text, BULL_WORDS) - count_keywords(post.text, BEAR_WORDS)
        if vote > 0:
            bullish += weight
        elif vote < 0:
            bearish += weight
        total_weight += weight
        if post.likes > HIGHLIGHT_LIKES or post.followers > HIGHLIGHT_FOLLOWERS:
            highlights.append(Highlight(author=post.author, text=post.text[:150], likes=post.likes))

    sentiment = (bullish - bearish) / total_weight if total_weight > 0 else 0.0
    existing_bullish = existing_sentiment > 0
    confirms = (sentiment > AGREEMENT_BAND and existing_bullish) or (
        sentiment < -AGREEMENT_BAND and not existing_bullish
    )
    return ConfirmationResult(
        symbol=symbol,
        sentiment=clamp(sentiment, -1.0, 1.0),
        confirms_existing=confirms,
        sample_count=len(posts),
        highlights=highlights[:MAX_HIGHLIGHTS],
        timestamp=now,
    )


def breaking_news_query(symbols: list[str]) -> str:
    accounts = " OR ".join(f"from:{a}" for a in NEWS_ACCOUNTS)
    tickers = " OR ".join(f"${s}" for s in symbols)
    return f"({accounts}) ({tickers}) -is:retweet"


def detect_breaking_news(symbols: list[str], posts: list[SocialPost], now: float) -> list[BreakingNewsItem]:
    """Posts younger than 30 min that name one of ``symbols``; under 10 min is breaking."""
    out: list[BreakingNewsItem] = []
    for post in posts:
        age = now - post.created_at
        if age > NEWS_MAX_AGE_SECONDS:
            continue
        upper = post.text.upper()
        mentioned = next((s for s in symbols if f"${s}" in upper or f" {s} " in upper), None)
        if mentioned is None:
            continue
        out.append(
            BreakingNewsItem(
                symbol=mentioned,
                headline=post.text[:200],
                author=post.author,
                age_minutes=round(age / 60),
                is_breaking=age < BREAKING_AGE_SECONDS,
            )
        )
    if out:
        logger.info("[confirmation] breaking news found count=%d symbols=%s", len(out), [n.symbol for n in out])
    return out
