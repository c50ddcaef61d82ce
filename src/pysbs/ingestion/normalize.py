"""Normalization helpers.

Centralizes defensive field parsing. Every helper degrades to ``None``
("field absent") instead of a zero sentinel.
"""

from __future__ import annotations

import math
from typing import Any

_TRUE_FLAGS = frozenset({"1", "-1"})
_FALSE_FLAGS = frozenset({"0"})


def safe_float(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def parse_flag(value: Any) -> bool | None:
    """Convert a BaseStation flag field to a boolean.

    BaseStation itself emits ``-1`` for true; most decoders emit ``1``.
    """
    text = safe_str(value)
    if text is None:
        return None
    if text in _TRUE_FLAGS:
        return True
    if text in _FALSE_FLAGS:
        return False
    return None


def in_range(value: float | None, low: float, high: float) -> bool:
    return value is not None and low <= value <= high


def is_meaningful(value: Any) -> bool:
    """Return True if the value should be included in a merge patch."""

    if value is None:
        return False
    return not (isinstance(value, str) and not value.strip())


def prune_patch(data: dict[str, Any]) -> dict[str, Any]:
    """Drop non-meaningful values from a flat merge patch.

    State merging assumes incoming patches are already pruned.
    """

    return {key: value for key, value in data.items() if is_meaningful(value)}


def truncate_for_log(value: str | bytes, *, max_length: int = 120) -> str:
    """Return a bounded, printable rendition of a raw line for debug logs."""
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="replace")
    if len(value) > max_length:
        return f"{value[:max_length]}…<truncated>"
    return value
