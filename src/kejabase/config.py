"""Application configuration for kejabase."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from kejabase.exceptions import KejabaseConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class KejabaseConfig:
    """Application configuration.

    Parameters
    ----------
    project_id : str or None
        Hosted document database project. When ``None`` (or no
        ``api_key``) the application runs against the in-memory backend.
    api_key : str or None
        Web API key used for the identity endpoints.
    firestore_base_url : str
        Base URL of the documents REST API.
    identity_base_url : str
        Base URL of the identity (sign-in/sign-up) REST API.
    token_base_url : str
        Base URL of the id-token refresh endpoint.
    request_timeout : float
        Total timeout in seconds for a single backend HTTP request.
    storage_path : str or None
        JSON file holding the durable state projection. ``None`` keeps it
        in memory only (nothing survives a restart).
    storage_key : str
        Name of the blob the durable state projection is stored under.
    monitor_interval : float
        Seconds between readiness re-evaluations of the background monitor.
    monitor_timeout : float
        Hard lifetime of the background monitor in seconds.
    wait_poll_interval : float
        Poll interval used by ``wait_for_service`` style waits.
    backend_wait_timeout : float
        Sequenced bring-up: how long to wait for the backend service.
    auth_wait_timeout : float
        Sequenced bring-up: how long to wait for the auth service.
    all_wait_timeout : float
        Sequenced bring-up: how long to wait for every service.
    sequence_delay : float
        Delay before the sequenced bring-up is attempted, if the services
        have not become ready on their own by then.
    strict_services : bool
        Reject unknown service names with ``UnknownServiceError`` instead of
        ignoring them.
    """

    project_id: str | None = None
    api_key: str | None = None
    firestore_base_url: str = "https://firestore.googleapis.com/v1"
    identity_base_url: str = "https://identitytoolkit.googleapis.com/v1"
    token_base_url: str = "https://securetoken.googleapis.com/v1"
    request_timeout: float = 30.0
    storage_path: str | None = None
    storage_key: str = "appState"
    monitor_interval: float = 0.2
    monitor_timeout: float = 15.0
    wait_poll_interval: float = 0.1
    backend_wait_timeout: float = 5.0
    auth_wait_timeout: float = 3.0
    all_wait_timeout: float = 5.0
    sequence_delay: float = 1.0
    strict_services: bool = False

    def __post_init__(self) -> None:
        for name in (
            "request_timeout",
            "monitor_interval",
            "monitor_timeout",
            "wait_poll_interval",
            "backend_wait_timeout",
            "auth_wait_timeout",
            "all_wait_timeout",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise KejabaseConfigError(f"{name} must be positive, got {value!r}")
        if self.sequence_delay < 0:
            raise KejabaseConfigError(f"sequence_delay must not be negative, got {self.sequence_delay!r}")
        if not self.storage_key.strip():
            raise KejabaseConfigError("storage_key must be non-empty")

    @property
    def uses_remote_backend(self) -> bool:
        """Whether enough credentials are configured to talk to the hosted backend."""
        return bool(self.project_id and self.api_key)

    @classmethod
    def from_env(cls, **overrides: Any) -> KejabaseConfig:
        """Create configuration from ``KEJABASE_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "KEJABASE_PROJECT_ID": "project_id",
            "KEJABASE_API_KEY": "api_key",
            "KEJABASE_FIRESTORE_URL": "firestore_base_url",
            "KEJABASE_IDENTITY_URL": "identity_base_url",
            "KEJABASE_TOKEN_URL": "token_base_url",
            "KEJABASE_STORAGE_PATH": "storage_path",
            "KEJABASE_STORAGE_KEY": "storage_key",
        }
        _ENV_FLOAT_MAP = {
            "KEJABASE_REQUEST_TIMEOUT": "request_timeout",
            "KEJABASE_MONITOR_INTERVAL": "monitor_interval",
            "KEJABASE_MONITOR_TIMEOUT": "monitor_timeout",
            "KEJABASE_WAIT_POLL_INTERVAL": "wait_poll_interval",
            "KEJABASE_BACKEND_WAIT_TIMEOUT": "backend_wait_timeout",
            "KEJABASE_AUTH_WAIT_TIMEOUT": "auth_wait_timeout",
            "KEJABASE_ALL_WAIT_TIMEOUT": "all_wait_timeout",
            "KEJABASE_SEQUENCE_DELAY": "sequence_delay",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = val

        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = float(val)
            except ValueError as exc:
                raise KejabaseConfigError(f"{env_key} must be a number, got {val!r}") from exc

        if "strict_services" not in overrides:
            config_kwargs["strict_services"] = _env_bool(env.get("KEJABASE_STRICT_SERVICES"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
