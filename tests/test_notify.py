from __future__ import annotations

import json

import httpx
import pytest

from alphadesk.models import Notification
from alphadesk.notify import CooldownNotifier, DiscordWebhookSink, build_embed
from alphadesk.providers.base import NotificationSink
from alphadesk.providers.mock import MockNotifier


def _event(symbol: str = "NVDA", kind: str = "trade") -> Notification:
    return Notification(kind=kind, symbol=symbol, title=f"BUY {symbol}", details={"confidence": 0.8123, "reason": "momentum"})


@pytest.mark.asyncio
async def test_cooldown_suppresses_repeat_symbol() -> None:
    now = [1_000.0]
    inner = MockNotifier()
    notifier = CooldownNotifier(inner, cooldown_seconds=1800, clock=lambda: now[0])

    await notifier.notify(_event("NVDA", "research"))
    await notifier.notify(_event("NVDA", "research"))
    await notifier.notify(_event("AMD", "research"))
    now[0] += 1800
    await notifier.notify(_event("NVDA", "research"))

    assert [e.symbol for e in inner.events] == ["NVDA", "AMD", "NVDA"]


@pytest.mark.asyncio
async def test_cooldown_logs_delivery_failures() -> None:
    class Broken(NotificationSink):
        async def notify(self, event: Notification) -> None:
            raise httpx.ConnectError("refused")

    notifier = CooldownNotifier(Broken(), clock=lambda: 0.0)
    await notifier.notify(_event())


@pytest.mark.asyncio
async def test_cooldown_is_per_kind_and_never_holds_back_trades() -> None:
    inner = MockNotifier()
    notifier = CooldownNotifier(inner, cooldown_seconds=1800, clock=lambda: 1_000.0)

    await notifier.notify(_event("NVDA", "research"))
    await notifier.notify(_event("NVDA", "trade"))
    await notifier.notify(_event("NVDA", "trade"))
    await notifier.notify(_event("NVDA", "breaking"))
    await notifier.notify(_event("NVDA", "research"))

    assert [e.kind for e in inner.events] == ["research", "trade", "trade", "breaking"]


@pytest.mark.asyncio
async def test_failed_delivery_does_not_start_cooldown() -> None:
    class Flaky(NotificationSink):
        def __init__(self) -> None:
            self.calls = 0
            self.delivered: list[Notification] = []

        async def notify(self, event: Notification) -> None:
            self.calls += 1
            if self.calls == 1:
                raise httpx.ConnectError("refused")
            self.delivered.append(event)

    inner = Flaky()
    notifier = CooldownNotifier(inner, cooldown_seconds=1800, clock=lambda: 1_000.0)

    await notifier.notify(_event("NVDA", "research"))
    await notifier.notify(_event("NVDA", "research"))
    await notifier.notify(_event("NVDA", "research"))

    assert inner.calls == 2
    assert len(inner.delivered) == 1


def test_build_embed_colors_and_fields() -> None:
    embed = build_embed(_event())
    assert embed["title"] == "BUY NVDA"
    assert embed["color"] == 0x3B82F6
    fields = {f["name"]: f["value"] for f in embed["fields"]}
    assert fields == {"Confidence": "0.81", "Reason": "momentum"}

    research = Notification(kind="research", symbol="NVDA", title="NVDA -> BUY", details={"verdict": "BUY", "red_flags": []})
    embed = build_embed(research)
    assert embed["color"] == 0x22C55E
    assert [f["name"] for f in embed["fields"]] == ["Verdict"]


@pytest.mark.asyncio
async def test_discord_sink_posts_embed(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(204)

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        httpx,
        "AsyncClient",
        lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw),
    )

    await DiscordWebhookSink("https://discord.test/webhook").notify(_event())

    assert seen[0]["embeds"][0]["title"] == "BUY NVDA"


@pytest.mark.asyncio
async def test_discord_sink_raises_on_http_error(monkeypatch: pytest.MonkeyPatch) -> None:
    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        httpx,
        "AsyncClient",
        lambda **kw: real_client(transport=httpx.MockTransport(lambda r: httpx.Response(500)), **kw),
    )

    with pytest.raises(httpx.HTTPStatusError):
        await DiscordWebhookSink("https://discord.test/webhook").notify(_event())
