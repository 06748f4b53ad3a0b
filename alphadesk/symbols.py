"""Symbol normalization helpers shared by signals, scanner and executor."""

from __future__ import annotations

from typing import Iterable

STABLECOINS = frozenset({
    "USDT",
    "USDC",
    "USDG",
    "DAI",
    "BUSD",
    "TUSD",
    "USDP",
    "GUSD",
    "FDUSD",
    "USDD",
    "USDE",
    "EURC",
    "PYUSD",
})


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


def crypto_symbol_key(symbol: str) -> str:
    """``BTC/USD`` and ``BTCUSD`` share the key ``BTCUSD``."""
    return normalize_symbol(symbol).replace("/", "")


def build_crypto_symbol_map(crypto_symbols: Iterable[str] | None) -> dict[str, str]:
    """Compact key -> canonical slash form for the active crypto symbols."""
    out: dict[str, str] = {}
    for symbol in crypto_symbols or ():
        normalized = normalize_symbol(symbol)
        out[normalized.replace("/", "")] = normalized
    return out


def normalize_crypto_symbol(symbol: str, crypto_symbols: Iterable[str] | None = None) -> str:
    normalized = normalize_symbol(symbol)
    if "/" in normalized:
        return normalized
    return build_crypto_symbol_map(crypto_symbols).get(normalized, normalized)


def to_slash_usd_symbol(symbol: str) -> str | None:
    normalized = normalize_symbol(symbol)
    if "/" in normalized:
        return normalized
    if normalized.endswith("USD") and len(normalized) > 3:
        return f"{normalized[:-3]}/USD"
    return None


def crypto_base_symbol(symbol: str) -> str:
    normalized = normalize_symbol(symbol)
    if "/" in normalized:
        return normalized.split("/")[0] or normalized
    if normalized.endswith("USD") and len(normalized) > 3:
        return normalized[:-3]
    return normalized


def is_stablecoin(symbol: str) -> bool:
    return crypto_base_symbol(symbol) in STABLECOINS


def symbol_variants(symbol: str) -> list[str]:
    """All spellings a brokerage might use for the same holding, primary first."""
    normalized = normalize_symbol(symbol)
    variants = [normalized]
    compact = normalized.replace("/", "")
    if compact != normalized:
        variants.append(compact)
    slash = to_slash_usd_symbol(normalized)
    if slash and slash not in variants:
        variants.append(slash)
    return variants


def held_symbol_keys(symbols: Iterable[str]) -> set[str]:
    """Held symbols plus their crypto base, so ``BTC`` matches a ``BTC/USD`` holding."""
    out: set[str] = set()
    for symbol in symbols:
        normalized = normalize_symbol(symbol)
        out.add(normalized)
        out.add(crypto_symbol_key(normalized))
        base = crypto_base_symbol(normalized)
        if base != normalized:
            out.add(base)
    return out
