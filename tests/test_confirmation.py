from __future__ import annotations

import pytest

from alphadesk.models import SocialPost
from alphadesk.research.confirmation import (
    breaking_news_query,
    confirmation_query,
    detect_breaking_news,
    post_weight,
    score_confirmation,
)

NOW = 1_700_000_000.0


def _post(text: str, **kw) -> SocialPost:  # noqa: ANN003
    return SocialPost(text=text, created_at=kw.pop("created_at", NOW), **kw)


def test_queries_name_the_symbol() -> None:
    assert confirmation_query("NVDA").startswith("$NVDA (unusual OR flow")
    assert "$NVDA OR $AMD" in breaking_news_query(["NVDA", "AMD"])


def test_post_weight_saturates() -> None:
    assert post_weight(_post("x")) == 0.0
    whale = post_weight(_post("x", followers=10**9, likes=10**6))
    assert whale == pytest.approx(1.5 * 1.3)


def test_confirmation_agrees_with_bullish_signal() -> None:
    posts = [
        _post("NVDA call sweep, very bullish", followers=50_000, likes=80, author="flowdesk"),
        _post("unusual flow, buying calls", followers=2_000),
        _post("neutral chatter", followers=100),
    ]
    result = score_confirmation("NVDA", posts, existing_sentiment=0.6, now=NOW)
    assert result is not None
    assert result.sentiment > 0.2
    assert result.confirms_existing is True
    assert result.sample_count == 3
    assert [h.author for h in result.highlights] == ["flowdesk"]


def test_confirmation_disagreement_and_empty() -> None:
    bearish = [_post("puts everywhere, downgrade incoming", followers=5_000)]
    result = score_confirmation("NVDA", bearish, existing_sentiment=0.6, now=NOW)
    assert result.sentiment < 0
    assert result.confirms_existing is False
    assert score_confirmation("NVDA", [], existing_sentiment=0.6, now=NOW) is None


def test_breaking_news_age_bands() -> None:
    posts = [
        _post("$NVDA halted pending news", created_at=NOW - 120, author="FirstSquawk"),
        _post("$AMD guidance raised", created_at=NOW - 1200),
        _post("$NVDA old headline", created_at=NOW - 4000),
        _post("$TSLA unrelated", created_at=NOW - 60),
    ]
    items = detect_breaking_news(["NVDA", "AMD"], posts, NOW)
    assert [(i.symbol, i.is_breaking) for i in items] == [("NVDA", True), ("AMD", False)]
    assert items[1].age_minutes == 20
