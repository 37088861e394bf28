"""
Utility Functions

Small helpers shared by the domain value objects: half-up rounding, text
normalisation and ISO timestamps.
"""

import math
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional


def round_half_up(value: float, digits: int = 0) -> float:
    """
    Round ``value`` to ``digits`` decimals, with halves rounded up.

    Unlike ``round()``, 62.5 becomes 63 rather than 62.
    """
    quantum = Decimal(1).scaleb(-digits)
    rounded = Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return float(rounded)


def round_score(value: float) -> int:
    """Round a score to a whole number, halves up."""
    return int(round_half_up(value, 0))


def is_finite_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def clean_text(value: Optional[str]) -> str:
    return value.strip() if isinstance(value, str) else ""


def unique_trimmed(values: Optional[Iterable[str]], case_insensitive: bool = False) -> List[str]:
    """
    Trim every value, drop blanks and duplicates, and keep first-seen order.

    With ``case_insensitive`` the first spelling of a value wins.
    """
    seen = set()
    result = []
    for value in values or []:
        text = clean_text(value)
        if not text:
            continue
        key = text.lower() if case_insensitive else text
        if key in seen:
            continue
        seen.add(key)
        result.append(text)
    return result


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
