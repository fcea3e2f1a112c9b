"""Custom exception hierarchy for kejabase."""

from __future__ import annotations

_FRIENDLY_MESSAGES: dict[str, str] = {
    "permission-denied": "You don't have permission to perform this action.",
    "unauthenticated": "Please sign in to continue.",
    "not-found": "The requested item was not found.",
}


class KejabaseError(Exception):
    """Base exception for all kejabase errors."""


class KejabaseConfigError(KejabaseError):
    """Invalid or missing configuration."""


class ServiceTimeoutError(KejabaseError, TimeoutError):
    """A bounded readiness wait exceeded its deadline."""

    def __init__(self, service: str, timeout: float) -> None:
        self.service = service
        self.timeout = timeout
        super().__init__(f"Service {service} initialization timeout after {timeout:g}s")


class UnknownServiceError(KejabaseError, KeyError):
    """A service name outside the tracked set was registered in strict mode."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        return f"Unknown service name: {self.name!r}"


class BackendError(KejabaseError):
    """A call into the backend collaborator failed."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)

    @property
    def user_message(self) -> str:
        """Short message suitable for showing to an end user."""
        return _FRIENDLY_MESSAGES.get(self.code) or str(self) or "Unexpected error"


class BackendTransportError(BackendError):
    """HTTP-level failure (network, non-2xx, invalid JSON)."""


class AuthenticationError(BackendError):
    """Sign-in, sign-up or token refresh was rejected."""


class AuthorizationError(KejabaseError):
    """The signed-in user does not hold the required role."""

    def __init__(self, required: str, actual: str | None) -> None:
        self.required = required
        self.actual = actual
        super().__init__(f"You don't have {required} privileges.")
