from __future__ import annotations

import pytest

from alphadesk.signals.text import extract_tickers, keyword_sentiment
from alphadesk.signals.weighting import (
    engagement_multiplier,
    flair_multiplier,
    mention_quality,
    source_weight,
    time_decay,
)

NOW = 1_700_000_000.0


def test_time_decay_halves_every_two_hours_and_floors() -> None:
    assert time_decay(NOW, NOW) == pytest.approx(1.0)
    assert time_decay(NOW - 120 * 60, NOW) == pytest.approx(0.5)
    assert time_decay(NOW - 240 * 60, NOW) == pytest.approx(0.25)
    assert time_decay(NOW - 48 * 3600, NOW) == pytest.approx(0.2)


def test_time_decay_treats_future_posts_as_fresh() -> None:
    assert time_decay(NOW + 600, NOW) == pytest.approx(1.0)


def test_engagement_multiplier_steps() -> None:
    assert engagement_multiplier(0, 0) == pytest.approx((0.8 + 0.9) / 2)
    assert engagement_multiplier(1000, 200) == pytest.approx((1.5 + 1.4) / 2)
    assert engagement_multiplier(150, 60) == pytest.approx((1.1 + 1.15) / 2)


def test_flair_and_source_lookups_default_to_neutral() -> None:
    assert flair_multiplier("DD") >= 1.2
    assert flair_multiplier("Meme") <= 0.4
    assert flair_multiplier("Something New") == 1.0
    assert flair_multiplier(None) == 1.0
    assert source_weight("reddit_stocks") == pytest.approx(0.9)
    assert source_weight("unknown_forum") == pytest.approx(0.7)


def test_mention_quality_matches_worked_example() -> None:
    quality = mention_quality(1.0, 1.2, 1.0, 0.8)
    assert quality == pytest.approx(0.96)
    assert 0.6 * quality == pytest.approx(0.576)


def test_extract_tickers_dollar_and_keyword_forms() -> None:
    text = "Loading $NVDA and $nvda again, PLTR calls look cheap, the CEO spoke"
    assert extract_tickers(text) == ["NVDA", "PLTR"]


def test_extract_tickers_ignores_blacklist() -> None:
    assert extract_tickers("$YOLO into $DD before the $SEC filing") == []


def test_keyword_sentiment_is_balanced_ratio() -> None:
    assert keyword_sentiment("nothing to see here") == 0.0
    assert keyword_sentiment("bullish breakout") == pytest.approx(1.0)
    assert keyword_sentiment("bullish but might crash") == pytest.approx(0.0)
