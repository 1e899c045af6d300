"""Canonicalization helpers for answer values.

Provides a stable string representation of submitted and stored values so
change detection does not depend on how a value was typed on the way in
(`3` vs `"3"` vs `3.0`, key order in row objects, blank strings).
"""

from __future__ import annotations

import json
from typing import Any, Optional


def canonicalize_answer_value(value: Any) -> Optional[str]:
    """Return a stable string representation for an answer value.

    - None, blank strings, empty lists/objects -> None
    - Booleans -> "true" / "false"
    - Numbers  -> integer form when integral, else decimal string
    - Text     -> as-is string
    - Lists / objects -> compact JSON with sorted keys
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        f = float(value)
        if f.is_integer():
            return str(int(f))
        return str(f)
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, (list, tuple, dict)):
        if not value:
            return None
        return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(value)


def values_equal(left: Any, right: Any) -> bool:
    return canonicalize_answer_value(left) == canonicalize_answer_value(right)


def is_answered(value: Any) -> bool:
    return canonicalize_answer_value(value) is not None


__all__ = ["canonicalize_answer_value", "values_equal", "is_answered"]
