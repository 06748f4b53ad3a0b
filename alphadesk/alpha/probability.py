"""Probability model behind the alpha scan.

``implied`` is what recent price action already prices in, ``calculated`` is
what the signals say; alpha is their difference. Both are kept in [0, 1], so
alpha is always in [-1, 1].
"""

from __future__ import annotations

import math

from alphadesk.models import Bar
from alphadesk.utils import clamp, clamp_probability

AVG_ABS_RETURN_FLOOR = 0.02
UP_DAYS_BLEND = 0.4
CRYPTO_MOMENTUM_BLEND = 0.7
CRYPTO_MOMENTUM_CAP = 0.4


def _daily_returns(bars: list[Bar]) -> list[float]:
    out: list[float] = []
    for prev, cur in zip(bars, bars[1:]):
        if not prev.close:
            continue
        out.append((cur.close - prev.close) / prev.close)
    return out


def avg_abs_return(bars: list[Bar]) -> float | None:
    """Mean absolute close-to-close return, or None with under two usable bars."""
    returns = _daily_returns(bars)
    if not returns:
        return None
    return sum(abs(r) for r in returns) / len(returns)


def up_days_probability(bars: list[Bar]) -> float | None:
    returns = _daily_returns(bars)
    if not returns:
        return None
    return sum(1 for r in returns if r > 0) / len(returns)


def implied_probability(daily_return: float, avg_abs: float) -> float:
    if not math.isfinite(avg_abs) or avg_abs <= 0:
        return 0.5
    normalized = clamp(daily_return / (2 * avg_abs), -0.5, 0.5)
    return clamp_probability(0.5 + normalized)


def equity_calculated_probability(sentiment_avg: float, up_days: float | None) -> float:
    prob = clamp_probability(sentiment_avg)
    if up_days is not None:
        prob = clamp_probability((1 - UP_DAYS_BLEND) * prob + UP_DAYS_BLEND * up_days)
    return prob


def crypto_calculated_probability(sentiment_avg: float, momentum_avg: float | None) -> float:
    edge = clamp((momentum_avg or 0.0) / 10, -CRYPTO_MOMENTUM_CAP, CRYPTO_MOMENTUM_CAP)
    momentum_prob = clamp_probability(0.5 + edge)
    sentiment_prob = clamp_probability(sentiment_avg)
    return clamp_probability(
        CRYPTO_MOMENTUM_BLEND * momentum_prob + (1 - CRYPTO_MOMENTUM_BLEND) * sentiment_prob
    )


def alpha_confidence(alpha: float, threshold: float) -> float:
    """Alpha exactly at ``threshold`` maps to 0.5; stronger edges saturate toward 1."""
    span = max(0.05, 1 - threshold)
    return clamp_probability(0.5 + 0.5 * (alpha - threshold) / span)


def edge_threshold(threshold: float, is_crypto: bool, crypto_cap: float = 0.03) -> float:
    """Crypto has no informative implied baseline, so its bar is capped lower."""
    return min(threshold, crypto_cap) if is_crypto else threshold
