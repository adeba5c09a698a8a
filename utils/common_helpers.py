from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

_WS_RE = re.compile(r"\s+")


def to_float(x: Any) -> float:
    """Coerce provider numbers (str, Decimal, None, NaN) to a finite float, 0.0 otherwise."""
    if x is None:
        return 0.0
    if isinstance(x, Decimal):
        x = float(x)
    try:
        f = float(x)
    except (TypeError, ValueError):
        return 0.0
    return f if math.isfinite(f) else 0.0


def safe_div(n: float, d: float) -> float:
    if not d:
        return 0.0
    return n / d


def pct(part: float, total: float) -> float:
    """Percentage of `total`; 0.0 when the total is zero."""
    return safe_div(part, total) * 100.0


def collapse_ws(value: Optional[str]) -> str:
    return _WS_RE.sub(" ", (value or "").strip())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
