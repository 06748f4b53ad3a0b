"""Per-mention quality factors: time decay, engagement, flair, and source trust."""

from __future__ import annotations

from alphadesk.utils import clamp

DECAY_HALF_LIFE_MINUTES = 120.0
DECAY_FLOOR = 0.2

SOURCE_WEIGHTS: dict[str, float] = {
    "stocktwits": 0.85,
    "reddit_wallstreetbets": 0.6,
    "reddit_stocks": 0.9,
    "reddit_investing": 0.8,
    "reddit_options": 0.85,
    "twitter_fintwit": 0.95,
    "twitter_news": 0.9,
}
DEFAULT_SOURCE_WEIGHT = 0.7

FLAIR_MULTIPLIERS: dict[str, float] = {
    "DD": 1.5,
    "Technical Analysis": 1.3,
    "Fundamentals": 1.3,
    "News": 1.2,
    "Discussion": 1.0,
    "Chart": 1.1,
    "Daily Discussion": 0.7,
    "Weekend Discussion": 0.6,
    "YOLO": 0.6,
    "Gain": 0.5,
    "Loss": 0.5,
    "Meme": 0.4,
    "Shitpost": 0.3,
}

# (minimum count, multiplier), highest threshold first
UPVOTE_STEPS: tuple[tuple[int, float], ...] = ((1000, 1.5), (500, 1.3), (200, 1.2), (100, 1.1), (50, 1.0), (0, 0.8))
COMMENT_STEPS: tuple[tuple[int, float], ...] = ((200, 1.4), (100, 1.25), (50, 1.15), (20, 1.05), (0, 0.9))
UPVOTE_DEFAULT = 0.8
COMMENT_DEFAULT = 0.9


def time_decay(posted_at: float, now: float, half_life_minutes: float = DECAY_HALF_LIFE_MINUTES) -> float:
    """0.5^(age/half_life), clamped to [0.2, 1.0]. Future timestamps read as brand new."""
    age_minutes = (now - posted_at) / 60.0
    return clamp(0.5 ** (age_minutes / half_life_minutes), DECAY_FLOOR, 1.0)


def _step(value: int, steps: tuple[tuple[int, float], ...], default: float) -> float:
    for threshold, mult in steps:
        if value >= threshold:
            return mult
    return default


def engagement_multiplier(upvotes: int, comments: int) -> float:
    return (_step(upvotes, UPVOTE_STEPS, UPVOTE_DEFAULT) + _step(comments, COMMENT_STEPS, COMMENT_DEFAULT)) / 2


def flair_multiplier(flair: str | None) -> float:
    if not flair:
        return 1.0
    return FLAIR_MULTIPLIERS.get(flair.strip(), 1.0)


def source_weight(source_key: str) -> float:
    return SOURCE_WEIGHTS.get(source_key, DEFAULT_SOURCE_WEIGHT)


def mention_quality(decay: float, engagement: float, flair: float, weight: float) -> float:
    return decay * engagement * flair * weight
