"""Normalization helpers.

Centralizes defensive parsing of record payloads coming from the REST
gateway and the change feed.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
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


def non_negative_or_zero(value: Any) -> int | None:
    parsed = safe_int(value)
    if parsed is None:
        return None
    return 0 if parsed < 0 else parsed


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch number (seconds or ms) into UTC.

    Postgres emits ``2024-05-01 10:00:00.123+00`` as well as the ``T``
    separated form; both are accepted.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        if ts <= 0:
            return None
        if ts > 1e11:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        elif len(text) > 3 and text[-3] in "+-" and text[-2:].isdigit():
            text = f"{text}:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    return None


def version_of(value: Any) -> float | None:
    """Monotonic snapshot version (epoch seconds) derived from a timestamp."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.timestamp()
