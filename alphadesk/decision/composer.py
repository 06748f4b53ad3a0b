"""ConfidenceComposer: one bounded trade confidence per symbol and a go/no-go gate."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from alphadesk.alpha.probability import alpha_confidence, edge_threshold
from alphadesk.config import AgentConfig
from alphadesk.models import AlphaCandidate, ConfirmationResult, ResearchVerdict, Unparseable
from alphadesk.utils import clamp

logger = logging.getLogger(__name__)

AssetKind = Literal["equity", "crypto", "option"]

ALPHA_WEIGHT = 0.6
JUDGE_WEIGHT = 0.4
CONFIRM_BOOST = 1.15
DISAGREE_PENALTY = 0.85


@dataclass
class Decision:
    symbol: str
    kind: AssetKind
    approved: bool
    confidence: float
    required: float
    basis: str
    reason: str = ""


class ConfidenceComposer:
    def __init__(self, config: AgentConfig) -> None:
        self.config = config

    def required_for(self, kind: AssetKind) -> float:
        if kind == "crypto":
            return self.config.crypto_min_analyst_confidence
        if kind == "option":
            return self.config.options_min_confidence
        return self.config.min_analyst_confidence

    def should_confirm(self, existing_sentiment: float) -> bool:
        """Only spend confirmation budget on signals strong enough to matter."""
        return abs(existing_sentiment) >= self.config.social_confirmation_min_sentiment

    @staticmethod
    def apply_confirmation(confidence: float, confirmation: ConfirmationResult | None) -> float:
        if confirmation is None:
            return confidence
        if confirmation.confirms_existing:
            return min(1.0, confidence * CONFIRM_BOOST)
        if confirmation.sentiment != 0:
            return confidence * DISAGREE_PENALTY
        return confidence

    def compose(
        self,
        symbol: str,
        *,
        kind: AssetKind = "equity",
        alpha: AlphaCandidate | None = None,
        verdict: ResearchVerdict | Unparseable | None = None,
        confirmation: ConfirmationResult | None = None,
    ) -> Decision:
        required = self.required_for(kind)

        if isinstance(verdict, Unparseable):
            logger.info("[composer] %s judge output unparseable (%s), treating as no verdict", symbol, verdict.reason)
            verdict = None

        if verdict is not None and verdict.verdict != "BUY":
            logger.info("[composer] %s vetoed by judge verdict %s", symbol, verdict.verdict)
            return Decision(symbol, kind, False, 0.0, required, "veto", f"judge verdict {verdict.verdict}")

        alpha_conf = None
        if alpha is not None:
            threshold = edge_threshold(self.config.alpha_edge_threshold, alpha.is_crypto)
            alpha_conf = alpha_confidence(alpha.alpha, threshold)

        if alpha_conf is not None and verdict is not None:
            confidence = ALPHA_WEIGHT * alpha_conf + JUDGE_WEIGHT * verdict.confidence
            basis = "alpha+judge"
        elif alpha_conf is not None:
            confidence = alpha_conf
            basis = "alpha"
        elif verdict is not None:
            confidence = verdict.confidence
            basis = "judge"
        else:
            logger.info("[composer] %s rejected: no judge verdict or alpha evidence", symbol)
            return Decision(symbol, kind, False, 0.0, required, "none", "no evidence")

        confidence = clamp(self.apply_confirmation(confidence, confirmation), 0.0, 1.0)

        if kind == "option" and (verdict is None or verdict.entry_quality != "excellent"):
            quality = verdict.entry_quality if verdict is not None else "none"
            logger.info("[composer] %s option rejected: entry quality %s (required excellent)", symbol, quality)
            return Decision(symbol, kind, False, confidence, required, basis, f"entry quality {quality}")

        if confidence < required:
            logger.info(
                "[composer] %s rejected: confidence %.3f < required %.3f (%s, %s)",
                symbol,
                confidence,
                required,
                kind,
                basis,
            )
            return Decision(symbol, kind, False, confidence, required, basis, "below threshold")

        return Decision(symbol, kind, True, confidence, required, basis)
