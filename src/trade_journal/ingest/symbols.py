"""Futures symbol cleaning.

Broker exports carry the contract month (``MNQH6``, ``ESZ24``,
``NQ MAR26``, ``@ES``).  Every fill keeps two spellings: the contract
itself, which keys position matching so that different expiries never
net against each other, and the root symbol, which resolves point values
and groups reports across contract rolls.
"""

from __future__ import annotations

import re

_SPELLED_MONTH = re.compile(r"\s*(MAR|JUN|SEP|DEC)\s*\d+", re.IGNORECASE)
_MONTH_CODE = re.compile(r"(H|M|U|Z)\d{1,2}$")
_DATED_SUFFIX = re.compile(r"\s+\d{2}-\d{2}")


def clean_symbol(raw: str) -> str:
    """Strip contract-month codes and venue prefixes from *raw*."""
    symbol = raw.strip().upper()
    symbol = _SPELLED_MONTH.sub("", symbol)
    symbol = _MONTH_CODE.sub("", symbol)
    symbol = _DATED_SUFFIX.sub("", symbol)
    symbol = symbol.lstrip("@").strip()
    return symbol.split(" ")[0] if symbol else symbol


def contract_symbol(raw: str) -> str:
    """Canonical spelling of the traded contract: ``" nq  mar26"`` -> ``"NQ MAR26"``."""
    return " ".join(raw.strip().upper().lstrip("@").split())
