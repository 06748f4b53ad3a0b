"""LLM judge client over any OpenAI-compatible chat completions endpoint.

Swap ``base_url`` and the model names in ``AgentConfig`` to point the judge at
another provider.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from openai import AsyncOpenAI

from alphadesk.config import get_settings
from alphadesk.errors import ProviderUnavailable
from alphadesk.models import JudgeResponse
from alphadesk.providers.base import LLMJudge

logger = logging.getLogger(__name__)

# USD per 1M tokens (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o": (2.5, 10.0),
    "gpt-4o-mini": (0.15, 0.6),
}
FALLBACK_MODEL = "gpt-4o"


def estimate_cost_usd(model: str, tokens_in: int, tokens_out: int) -> float:
    """Unknown models are billed at the most expensive known rate."""
    price_in, price_out = MODEL_PRICING.get(model, MODEL_PRICING[FALLBACK_MODEL])
    return (tokens_in * price_in + tokens_out * price_out) / 1_000_000


class LLMClient(LLMJudge):
    """Thin async wrapper around an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        provider: str,
        api_key: str,
        base_url: str,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        temperature: float = 0.3,
    ) -> None:
        self.provider = provider
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.temperature = temperature

        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
        )

        self._total_prompt_tokens = 0
        self._total_completion_tokens = 0

    async def evaluate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str,
        max_tokens: int,
    ) -> JudgeResponse:
        """Send one chat completion with retry + backoff; content is returned unparsed."""
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": self.temperature,
        }

        last_exc: BaseException | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._client.chat.completions.create(**kwargs)
            except Exception as exc:
                last_exc = exc
                wait = self.backoff_base ** attempt
                logger.warning(
                    "LLM call failed (attempt %d/%d, provider=%s): %s, retrying in %.1fs",
                    attempt,
                    self.max_retries,
                    self.provider,
                    exc,
                    wait,
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(wait)
                continue

            usage = response.usage
            tokens_in = usage.prompt_tokens if usage else 0
            tokens_out = usage.completion_tokens if usage else 0
            self._total_prompt_tokens += tokens_in
            self._total_completion_tokens += tokens_out
            logger.debug(
                "LLM usage [%s/%s] prompt=%d completion=%d",
                self.provider,
                model,
                tokens_in,
                tokens_out,
            )
            content = response.choices[0].message.content if response.choices else ""
            return JudgeResponse(content=content or "", model=model, tokens_in=tokens_in, tokens_out=tokens_out)

        raise ProviderUnavailable(
            f"llm/{self.provider}", f"failed after {self.max_retries} attempts: {last_exc}"
        ) from last_exc

    @property
    def token_usage(self) -> dict[str, int]:
        return {
            "prompt_tokens": self._total_prompt_tokens,
            "completion_tokens": self._total_completion_tokens,
            "total_tokens": self._total_prompt_tokens + self._total_completion_tokens,
        }


_judge_client: LLMClient | None = None


def get_judge_client() -> LLMClient | None:
    """Return (and cache) the judge client, or None when no API key is configured."""
    global _judge_client
    if _judge_client is None:
        s = get_settings()
        if not s.llm_enabled:
            return None
        _judge_client = LLMClient(
            provider=s.llm_provider,
            api_key=s.llm_api_key,
            base_url=s.llm_base_url,
        )
    return _judge_client
