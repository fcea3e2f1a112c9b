"""JSON-over-HTTPS transport for the hosted backend."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from kejabase._redact import redact_for_log
from kejabase.exceptions import BackendTransportError

_logger = logging.getLogger(__name__)

USER_AGENT = "kejabase-python"

_MESSAGE_CODE_RE = re.compile(r"^([A-Z][A-Z_]+)(?:\s*:|$)")


def _error_code(status: str) -> str:
    """``PERMISSION_DENIED`` -> ``permission-denied``."""
    return status.strip().lower().replace("_", "-")


def _parse_error(status_code: int, text: str) -> tuple[str, str]:
    """Extract ``(code, message)`` from a Google-style error body.

    Document API errors carry a ``status`` enum; identity API errors only
    carry an upper-case ``message`` such as ``EMAIL_NOT_FOUND``.
    """
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return "", text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return "", text[:200]
    message = str(error.get("message") or f"HTTP {status_code}")
    status = error.get("status")
    if isinstance(status, str) and status:
        return _error_code(status), message
    match = _MESSAGE_CODE_RE.match(message)
    if match:
        return _error_code(match.group(1)), message
    return "", message


class Transport(Protocol):
    """Structural transport interface used by the REST backend.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (:class:`JsonTransport`) concrete.
    """

    async def request(
        self,
        method: str,
        url: str,
        *,
        payload: Mapping[str, Any] | None = None,
        bearer: str | None = None,
        allow_not_found: bool = False,
    ) -> Any: ...


class JsonTransport:
    """Send JSON requests and decode JSON replies over a shared aiohttp session."""

    def __init__(self, http_session: aiohttp.ClientSession, *, timeout: float = 30.0) -> None:
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def request(
        self,
        method: str,
        url: str,
        *,
        payload: Mapping[str, Any] | None = None,
        bearer: str | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        """Perform one request.

        Returns the decoded JSON body (``{}`` for an empty body), or ``None``
        for a 404 when *allow_not_found* is set.
        """
        headers: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        if bearer:
            headers["authorization"] = f"Bearer {bearer}"
        body: str | None = None
        if payload is not None:
            headers["content-type"] = "application/json; charset=UTF-8"
            body = json.dumps(payload, separators=(",", ":"))

        safe_url: str = redact_for_log(url, max_string=2048)
        _logger.debug("%s %s %s", method, safe_url, redact_for_log(payload))

        try:
            async with self._http.request(method, url, data=body, headers=headers, timeout=self._timeout) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise BackendTransportError(
                f"Request to {safe_url} failed: {exc}",
                code="unavailable",
                endpoint=safe_url,
            ) from exc

        if status == 404 and allow_not_found:
            return None
        if status < 200 or status >= 300:
            code, message = _parse_error(status, text)
            raise BackendTransportError(
                f"HTTP {status} from {safe_url}: {message}",
                code=code,
                status_code=status,
                endpoint=safe_url,
            )

        if not text.strip():
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise BackendTransportError(
                f"Invalid JSON from {safe_url}: {text[:200]}",
                status_code=status,
                endpoint=safe_url,
            ) from exc
