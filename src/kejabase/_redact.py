"""Helpers for safe debug logging.

Identity requests carry passwords and oob codes, token responses carry id
and refresh tokens, and every identity URL carries the web API key in its
query string. Both payloads and URLs go through :func:`redact_for_log`
before they reach DEBUG logs.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

REDACTED = "<redacted>"

# Compared after lower-casing and dropping underscores, so ``idToken``,
# ``id_token`` and ``IDTOKEN`` all match.
_SENSITIVE_NAMES: frozenset[str] = frozenset(
    {
        "password",
        "idtoken",
        "refreshtoken",
        "accesstoken",
        "token",
        "key",
        "apikey",
        "authorization",
        "cookie",
        "oobcode",
    }
)


def is_sensitive(name: str) -> bool:
    return name.replace("_", "").lower() in _SENSITIVE_NAMES


def _redact_query(url: str) -> str:
    base, sep, query = url.partition("?")
    if not sep:
        return url
    params = []
    for item in query.split("&"):
        name = item.partition("=")[0]
        params.append(f"{name}={REDACTED}" if is_sensitive(name) else item)
    return f"{base}?{'&'.join(params)}"


def redact_for_log(value: Any, *, max_string: int = 512) -> Any:
    """Return a copy of *value* with credentials masked.

    Mappings lose the values of sensitive keys, strings that look like URLs
    lose sensitive query parameters, long strings are truncated. JSON
    scalars pass through unchanged; anything else is shown by ``repr``.
    """
    if isinstance(value, Mapping):
        return {
            str(key): REDACTED if is_sensitive(str(key)) else redact_for_log(item, max_string=max_string)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact_for_log(item, max_string=max_string) for item in value]
    if isinstance(value, str):
        if value.startswith(("http://", "https://")):
            value = _redact_query(value)
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return repr(value)
