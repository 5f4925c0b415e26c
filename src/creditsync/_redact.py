"""Credential masking for request traces.

Every record-store request carries the project ``apikey`` and the user's
bearer JWT, in headers and, for some PostgREST deployments, in the query
string.  Trace logging routes headers, URLs, bodies and response text
through :func:`redact_for_log` first.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from enum import Enum
from typing import Any

_MASK = "<redacted>"
_MAX_DEPTH = 20

# Header, column and query-parameter names, compared lower-case with "-" as "_".
_SECRET_NAMES: frozenset[str] = frozenset(
    {
        "apikey",
        "api_key",
        "authorization",
        "access_token",
        "refresh_token",
        "provider_token",
        "token",
        "password",
        "cookie",
        "set_cookie",
    }
)

_JWT_RE = re.compile(r"eyJ[\w-]+\.[\w-]+\.[\w-]*")
_QUERY_SECRET_RE = re.compile(r"(?i)\b(apikey|api_key|access_token|refresh_token|token)=[^&\s\"']+")


def is_secret_name(name: object) -> bool:
    return str(name).strip().lower().replace("-", "_") in _SECRET_NAMES


def redact_text(text: str, *, limit: int = 512) -> str:
    """Mask bearer credentials, JWTs and secret query parameters in *text*."""
    if text[:7].lower() == "bearer ":
        return f"Bearer {_MASK}"
    masked = _JWT_RE.sub(_MASK, text)
    if "=" in masked:
        masked = _QUERY_SECRET_RE.sub(lambda m: f"{m.group(1)}={_MASK}", masked)
    if len(masked) > limit:
        masked = f"{masked[:limit]}…<truncated>"
    return masked


def redact_for_log(value: Any, *, limit: int = 512) -> Any:
    """Return a copy of *value* with credentials masked, for DEBUG logs."""
    return _redact(value, limit, 0)


def _redact(value: Any, limit: int, depth: int) -> Any:
    if depth > _MAX_DEPTH:
        return "<max-depth>"
    if isinstance(value, str):
        return redact_text(value, limit=limit)
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    if isinstance(value, Mapping):
        return {
            str(key): _MASK if is_secret_name(key) else _redact(item, limit, depth + 1)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_redact(item, limit, depth + 1) for item in value]
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return redact_text(repr(value), limit=limit)
