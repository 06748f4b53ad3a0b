"""Ticker extraction and keyword sentiment over free text."""

from __future__ import annotations

import re

TICKER_BLACKLIST = frozenset({
    "CEO", "CFO", "IPO", "EPS", "GDP", "SEC", "FDA", "USA", "USD", "ETF",
    "ATH", "ATL", "IMO", "FOMO", "YOLO", "DD", "TA", "THE", "AND", "FOR",
    "ARE", "BUT", "NOT", "YOU", "ALL", "CAN", "HER", "WAS", "ONE", "OUR",
    "WSB", "RIP", "LOL", "OMG", "WTF", "FUD", "HODL", "APE", "GME", "AMC",
})

# $TICKER, or a bare TICKER directly followed by a trading keyword
_TICKER_RE = re.compile(
    r"\$([A-Z]{1,5})\b"
    r"|\b([A-Z]{2,5})\b(?=\s+(?:calls?|puts?|stock|shares?|moon|rocket|yolo|buy|sell|long|short))",
    re.IGNORECASE,
)

BULLISH_WORDS = (
    "moon", "rocket", "buy", "calls", "long", "bullish", "yolo", "tendies", "gains",
    "diamond", "squeeze", "pump", "green", "up", "breakout", "undervalued", "accumulate",
)
BEARISH_WORDS = (
    "puts", "short", "sell", "bearish", "crash", "dump", "drill", "tank", "rip",
    "red", "down", "bag", "overvalued", "bubble", "avoid",
)


def extract_tickers(text: str) -> list[str]:
    """Unique ticker candidates in first-seen order."""
    found: dict[str, None] = {}
    for match in _TICKER_RE.finditer(text):
        ticker = (match.group(1) or match.group(2) or "").upper()
        if 2 <= len(ticker) <= 5 and ticker not in TICKER_BLACKLIST:
            found.setdefault(ticker, None)
    return list(found)


def count_keywords(text: str, words: tuple[str, ...]) -> int:
    """Substring hits, so ``up`` also counts inside ``upgrade``."""
    lower = text.lower()
    return sum(1 for w in words if w in lower)


def keyword_sentiment(
    text: str,
    bullish: tuple[str, ...] = BULLISH_WORDS,
    bearish: tuple[str, ...] = BEARISH_WORDS,
) -> float:
    """(bull - bear) / (bull + bear), 0 when nothing matches."""
    bull = count_keywords(text, bullish)
    bear = count_keywords(text, bearish)
    total = bull + bear
    if total == 0:
        return 0.0
    return (bull - bear) / total
