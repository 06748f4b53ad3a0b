"""Shared utilities: logging, call guard, numeric and time helpers."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import sys
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from alphadesk.errors import ProviderUnavailable

T = TypeVar("T")


# ── Structured JSON logging ───────────────────────────────────────────

class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure root logger with structured JSON output to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JSONFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


# ── Collaborator call guard ───────────────────────────────────────────

async def guarded_call(call: Awaitable[T], timeout: float, what: str) -> T:
    """Await a collaborator call under a hard timeout.

    Timeouts and transport failures surface as ``ProviderUnavailable`` so the
    caller only has one exception type to branch on.
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except ProviderUnavailable:
        raise
    except asyncio.TimeoutError as exc:
        raise ProviderUnavailable(what, f"timed out after {timeout:.0f}s") from exc
    except (httpx.HTTPError, OSError, ConnectionError) as exc:
        raise ProviderUnavailable(what, str(exc) or type(exc).__name__) from exc


async def gather_bounded(
    items: list[Any],
    fn: Callable[[Any], Awaitable[T]],
    *,
    concurrency: int = 8,
) -> list[T | BaseException]:
    """Run ``fn`` over ``items`` with bounded concurrency, keeping order.

    Failures are returned in place of results rather than cancelling siblings.
    """
    sem = asyncio.Semaphore(max(1, concurrency))

    async def _one(item: Any) -> T:
        async with sem:
            return await fn(item)

    return list(await asyncio.gather(*[_one(i) for i in items], return_exceptions=True))


# ── Numeric helpers ───────────────────────────────────────────────────

def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def clamp_probability(value: float) -> float:
    """Clamp into [0, 1]; non-finite input maps to a coin flip."""
    if not math.isfinite(value):
        return 0.5
    return clamp(value, 0.0, 1.0)


def safe_float(value: Any, default: float = 0.0) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    return out if math.isfinite(out) else default


# ── Timestamp helpers ─────────────────────────────────────────────────

def now_ts() -> float:
    """Current wall-clock time as epoch seconds."""
    return time.time()
