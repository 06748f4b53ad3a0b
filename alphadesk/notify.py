"""Notification sinks: a per-event cooldown wrapper and a Discord webhook sink."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from alphadesk.models import Notification
from alphadesk.providers.base import NotificationSink
from alphadesk.utils import now_ts

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 1800.0
UNTHROTTLED_KINDS = frozenset({"trade"})
FOOTER = "alphadesk - not financial advice"

_COLORS = {
    "signal": 0xFBBF24,
    "trade": 0x3B82F6,
    "breaking": 0xEF4444,
}
_VERDICT_COLORS = {"BUY": 0x22C55E, "SKIP": 0x6B7280}


class CooldownNotifier(NotificationSink):
    """Drops repeat (kind, symbol) events within the cooldown; trade events always go out.

    The cooldown starts only after a successful delivery. Delivery failures are logged, never raised.
    """

    def __init__(
        self,
        inner: NotificationSink,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = now_ts,
    ) -> None:
        self.inner = inner
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._last_sent: dict[tuple[str, str], float] = {}

    async def notify(self, event: Notification) -> None:
        key = (event.kind, event.symbol)
        if event.kind not in UNTHROTTLED_KINDS:
            last = self._last_sent.get(key)
            if last is not None and self._clock() - last < self.cooldown_seconds:
                logger.debug("[notify] %s %s suppressed by cooldown", event.kind, event.symbol)
                return
        try:
            await self.inner.notify(event)
        except (httpx.HTTPError, OSError) as exc:
            logger.warning("[notify] delivery failed for %s: %s", event.symbol, exc)
            return
        self._last_sent[key] = self._clock()


def build_embed(event: Notification) -> dict[str, Any]:
    details = event.details
    if event.kind == "research":
        verdict = str(details.get("verdict", ""))
        color = _VERDICT_COLORS.get(verdict, 0xFBBF24)
    else:
        color = _COLORS.get(event.kind, 0xFBBF24)

    fields = []
    for name, value in details.items():
        if value in (None, "", []):
            continue
        if isinstance(value, float):
            text = f"{value:.2f}"
        elif isinstance(value, list):
            text = "\n".join(f"- {v}" for v in value[:5])
        else:
            text = str(value)
        fields.append({"name": name.replace("_", " ").title(), "value": text[:1000], "inline": len(text) < 40})

    return {
        "title": event.title,
        "color": color,
        "fields": fields,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "footer": {"text": FOOTER},
    }


class DiscordWebhookSink(NotificationSink):
    def __init__(self, webhook_url: str, timeout: float = 10.0) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout

    async def notify(self, event: Notification) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self.webhook_url, json={"embeds": [build_embed(event)]})
            resp.raise_for_status()
        logger.info("[notify] sent %s notification for %s", event.kind, event.symbol)
