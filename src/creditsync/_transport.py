"""HTTP transport for the PostgREST-style record endpoint."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from creditsync._constants import USER_AGENT
from creditsync._redact import redact_for_log
from creditsync.config import SyncConfig
from creditsync.exceptions import GatewayError, NetworkError

_logger = logging.getLogger(__name__)

# Statuses worth retrying by the caller; everything else 4xx is a rejection.
_TRANSIENT_STATUSES: frozenset[int] = frozenset({408, 425, 429})


class Transport(Protocol):
    """Structural transport interface used by the gateway.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`RestTransport`) concrete.
    """

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Any = None,
        prefer: str | None = None,
    ) -> Any: ...


class RestTransport:
    """aiohttp transport that adds auth headers and maps failures to exceptions."""

    def __init__(self, config: SyncConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _headers(self, prefer: str | None) -> dict[str, str]:
        token = self._config.access_token or self._config.api_key
        headers: dict[str, str] = {
            "accept": "application/json",
            "content-type": "application/json",
            "user-agent": USER_AGENT,
        }
        if self._config.api_key:
            headers["apikey"] = self._config.api_key
        if token:
            headers["authorization"] = f"Bearer {token}"
        if prefer:
            headers["prefer"] = prefer
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Any = None,
        prefer: str | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body (``None`` when empty)."""
        url = f"{self._config.rest_url}/{path.lstrip('/')}"
        headers = self._headers(prefer)
        data = json.dumps(body, separators=(",", ":")) if body is not None else None

        _logger.debug("%s %s params=%s", method, url, redact_for_log(dict(params or {})))
        if self._config.api_trace_enabled:
            _logger.debug("request headers=%s body=%s", redact_for_log(headers), redact_for_log(body))

        try:
            async with self._http.request(
                method,
                url,
                params=dict(params or {}),
                data=data,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                status = resp.status
                text = await resp.text()
        except aiohttp.ClientError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}", endpoint=path) from exc
        except TimeoutError as exc:
            raise NetworkError(f"{method} {path} timed out", endpoint=path) from exc

        if self._config.api_trace_enabled:
            _logger.debug("response status=%s body=%s", status, redact_for_log(text))

        if status >= 500 or status in _TRANSIENT_STATUSES:
            raise NetworkError(
                f"HTTP {status} from {path}: {text[:200]}",
                status_code=status,
                endpoint=path,
            )

        payload: Any = None
        if text.strip():
            try:
                payload = json.loads(text)
            except json.JSONDecodeError as exc:
                if status >= 400:
                    raise GatewayError(
                        f"HTTP {status} from {path}: {text[:200]}",
                        code=str(status),
                        endpoint=path,
                    ) from exc
                raise NetworkError(
                    f"Invalid JSON from {path}: {text[:200]}",
                    status_code=status,
                    endpoint=path,
                ) from exc

        if status >= 400:
            code = str(status)
            message = text[:200]
            if isinstance(payload, dict):
                code = str(payload.get("code") or code)
                message = str(payload.get("message") or message)
            raise GatewayError(f"{method} {path} rejected: code={code} message={message}", code=code, endpoint=path)

        return payload
