from __future__ import annotations

import pytest

from alphadesk.config import AgentConfig
from alphadesk.decision.composer import ConfidenceComposer
from alphadesk.models import AlphaCandidate, ConfirmationResult, ResearchVerdict, Unparseable


def _verdict(verdict: str = "BUY", confidence: float = 0.7, quality: str = "good") -> ResearchVerdict:
    return ResearchVerdict(symbol="NVDA", verdict=verdict, confidence=confidence, entry_quality=quality)


def _alpha(alpha: float, *, crypto: bool = False) -> AlphaCandidate:
    return AlphaCandidate(symbol="BTC/USD" if crypto else "NVDA", is_crypto=crypto, alpha=alpha)


def test_judge_only_uses_verdict_confidence() -> None:
    composer = ConfidenceComposer(AgentConfig(min_analyst_confidence=0.6))
    decision = composer.compose("NVDA", verdict=_verdict(confidence=0.7))
    assert decision.approved is True
    assert decision.basis == "judge"
    assert decision.confidence == pytest.approx(0.7)


def test_non_buy_verdict_vetoes_regardless_of_alpha() -> None:
    composer = ConfidenceComposer(AgentConfig())
    decision = composer.compose("NVDA", alpha=_alpha(0.9), verdict=_verdict("SKIP", 0.99))
    assert decision.approved is False
    assert decision.basis == "veto"
    assert decision.confidence == 0.0


def test_alpha_and_judge_blend() -> None:
    composer = ConfidenceComposer(AgentConfig(alpha_edge_threshold=0.2))
    # alpha at threshold -> alpha confidence 0.5
    decision = composer.compose("NVDA", alpha=_alpha(0.2), verdict=_verdict(confidence=0.9))
    assert decision.basis == "alpha+judge"
    assert decision.confidence == pytest.approx(0.6 * 0.5 + 0.4 * 0.9)


def test_unparseable_verdict_falls_back_to_alpha() -> None:
    composer = ConfidenceComposer(AgentConfig(crypto_min_analyst_confidence=0.5))
    decision = composer.compose(
        "BTC/USD",
        kind="crypto",
        alpha=_alpha(0.5, crypto=True),
        verdict=Unparseable(symbol="BTC/USD", reason="no JSON object"),
    )
    assert decision.basis == "alpha"
    assert decision.approved is True
    assert 0.5 <= decision.confidence <= 1.0


def test_no_evidence_is_rejected() -> None:
    decision = ConfidenceComposer(AgentConfig()).compose("NVDA")
    assert decision.approved is False
    assert decision.basis == "none"


def test_confirmation_boosts_and_penalizes() -> None:
    composer = ConfidenceComposer(AgentConfig(min_analyst_confidence=0.6))
    agree = ConfirmationResult(symbol="NVDA", sentiment=0.5, confirms_existing=True)
    disagree = ConfirmationResult(symbol="NVDA", sentiment=-0.5, confirms_existing=False)
    silent = ConfirmationResult(symbol="NVDA", sentiment=0.0, confirms_existing=False)

    boosted = composer.compose("NVDA", verdict=_verdict(confidence=0.9), confirmation=agree)
    assert boosted.confidence == pytest.approx(1.0)

    penalized = composer.compose("NVDA", verdict=_verdict(confidence=0.65), confirmation=disagree)
    assert penalized.confidence == pytest.approx(0.65 * 0.85)
    assert penalized.approved is False
    assert penalized.reason == "below threshold"

    unchanged = composer.compose("NVDA", verdict=_verdict(confidence=0.65), confirmation=silent)
    assert unchanged.confidence == pytest.approx(0.65)


def test_options_need_excellent_entry_and_higher_bar() -> None:
    composer = ConfidenceComposer(AgentConfig(options_min_confidence=0.8))
    good = composer.compose("NVDA", kind="option", verdict=_verdict(confidence=0.95, quality="good"))
    assert good.approved is False
    assert good.reason == "entry quality good"

    low = composer.compose("NVDA", kind="option", verdict=_verdict(confidence=0.75, quality="excellent"))
    assert low.approved is False
    assert low.required == pytest.approx(0.8)

    ok = composer.compose("NVDA", kind="option", verdict=_verdict(confidence=0.85, quality="excellent"))
    assert ok.approved is True


def test_should_confirm_only_strong_signals() -> None:
    composer = ConfidenceComposer(AgentConfig(social_confirmation_min_sentiment=0.3))
    assert composer.should_confirm(0.35) is True
    assert composer.should_confirm(-0.4) is True
    assert composer.should_confirm(0.1) is False
