from __future__ import annotations

import re
from typing import Iterable

# canonical pair -> upstream result keys, most specific first
PAIR_ALIASES: dict[str, list[str]] = {
    "XBTUSD": ["XXBTZUSD", "XBTUSD"],
    "ETHUSD": ["XETHZUSD", "ETHUSD"],
    "ADAUSD": ["ADAUSD"],
    "DOTUSD": ["DOTUSD"],
    "SOLUSD": ["SOLUSD"],
    "MATICUSD": ["MATICUSD"],
    "LINKUSD": ["LINKUSD"],
    "UNIUSD": ["UNIUSD"],
}

DISPLAY_NAMES: dict[str, str] = {
    "XBTUSD": "Bitcoin",
    "ETHUSD": "Ethereum",
    "ADAUSD": "Cardano",
    "DOTUSD": "Polkadot",
    "SOLUSD": "Solana",
    "MATICUSD": "Polygon",
    "LINKUSD": "Chainlink",
    "UNIUSD": "Uniswap",
    "BTC/USD": "Bitcoin",
    "ETH/USD": "Ethereum",
    "ADA/USD": "Cardano",
    "DOT/USD": "Polkadot",
    "SOL/USD": "Solana",
    "MATIC/USD": "Polygon",
    "LINK/USD": "Chainlink",
    "UNI/USD": "Uniswap",
}

_QUOTE_ASSETS = ("USDT", "USDC", "USD", "EUR", "GBP", "JPY", "CAD", "CHF", "AUD", "XBT", "ETH")
_NON_ALNUM = re.compile(r"[^0-9A-Za-z]")
# Kraken prefixes legacy crypto assets with X and fiat with Z (XXBTZUSD)
_CLASS_PREFIX = re.compile(r"[XZ]")


def display_name(pair: str) -> str:
    name = DISPLAY_NAMES.get(pair)
    if name:
        return name
    return base_asset(pair)


def base_asset(pair: str) -> str:
    if "/" in pair:
        return pair.split("/")[0]
    for quote in _QUOTE_ASSETS:
        if pair.endswith(quote) and len(pair) > len(quote):
            return pair[: -len(quote)]
    return pair


def normalize_symbol(symbol: str) -> str:
    cleaned = _NON_ALNUM.sub("", symbol.upper())
    return _CLASS_PREFIX.sub("", cleaned)


def candidate_keys(pair: str) -> list[str]:
    return list(PAIR_ALIASES.get(pair, [pair]))


def resolve_result_key(pair: str, keys: Iterable[str]) -> str | None:
    """Find the upstream result key holding data for a canonical pair.

    Alias table first, then a fuzzy match on normalized symbols.
    """
    available = list(keys)
    present = set(available)
    for key in candidate_keys(pair):
        if key in present:
            return key

    wanted = normalize_symbol(pair)
    for key in available:
        if (wanted and wanted in normalize_symbol(key)) or pair in key:
            return key
    return None
