"""Authentication service.

Wraps the backend's auth handle with the application's account rules:
user documents carrying a role, role checks at sign-in, and resetting the
state store to a guest view on sign-out.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from kejabase.backend.base import AuthStateListener, Backend
from kejabase.exceptions import AuthorizationError, BackendError, KejabaseError
from kejabase.models.user import Role, UserIdentity
from kejabase.state.store import StateStore

_logger = logging.getLogger(__name__)


class AuthService:
    """Account operations on top of the backend collaborator.

    The service becomes usable once a ready backend has been wired in with
    :meth:`set_backend`; :meth:`is_backend_ready` is what the readiness
    coordinator probes.
    """

    def __init__(self, backend: Backend | None = None, state_store: StateStore | None = None) -> None:
        self.backend = backend
        self.state_store = state_store

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def set_backend(self, backend: Backend) -> AuthService:
        self.backend = backend
        return self

    def set_state_store(self, state_store: StateStore) -> AuthService:
        self.state_store = state_store
        return self

    def is_backend_ready(self) -> bool:
        backend = self.backend
        return bool(
            backend is not None
            and getattr(backend, "ready", False)
            and getattr(backend, "auth", None) is not None
            and getattr(backend, "collections", None)
        )

    def _require_backend(self) -> Backend:
        if not self.is_backend_ready():
            raise KejabaseError("Auth service is not ready: backend not wired")
        assert self.backend is not None  # noqa: S101
        return self.backend

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def current_user(self) -> UserIdentity | None:
        if not self.is_backend_ready():
            return None
        assert self.backend is not None  # noqa: S101
        return self.backend.auth.current_user

    async def get_current_user_data(self) -> dict[str, Any] | None:
        """The signed-in user's document, or ``None`` when signed out or missing."""
        user = self.current_user
        if user is None:
            return None
        doc = await self._require_backend().collections["users"].get(user.uid)
        return doc.data if doc is not None else None

    async def get_current_user_role(self) -> str | None:
        data = await self.get_current_user_data()
        if data is None:
            return None
        role = data.get("role")
        return str(role) if role else None

    # ------------------------------------------------------------------
    # Account operations
    # ------------------------------------------------------------------

    async def sign_in(
        self,
        email: str,
        password: str,
        *,
        required_role: str | None = None,
    ) -> tuple[UserIdentity, str | None]:
        """Sign in and load the user's role.

        Raises
        ------
        AuthorizationError
            When *required_role* is given and the user's role differs; the
            user is signed out again first.
        """
        backend = self._require_backend()
        user = await backend.auth.sign_in(email.strip(), password)
        role = await self.get_current_user_role()
        if required_role is not None and role != required_role:
            await backend.auth.sign_out()
            raise AuthorizationError(required_role, role)
        if self.state_store is not None:
            self.state_store.update_state(current_user=user, role=role)
        _logger.info("Signed in %s (role=%s)", user.uid, role)
        return user, role

    async def register(
        self,
        email: str,
        password: str,
        *,
        role: str = Role.HUNTER.value,
        name: str = "",
        phone: str = "",
    ) -> UserIdentity:
        """Create an account plus its user document."""
        backend = self._require_backend()
        user = await backend.auth.sign_up(email.strip(), password)
        await backend.collections["users"].set(
            user.uid,
            {
                "uid": user.uid,
                "email": user.email or email.strip(),
                "role": role,
                "name": name.strip(),
                "phone": phone.strip(),
                "createdAt": backend.server_timestamp(),
            },
        )
        if self.state_store is not None:
            self.state_store.update_state(current_user=user, role=role)
        _logger.info("Registered %s as %s", user.uid, role)
        return user

    async def sign_out(self) -> None:
        """Sign out (best effort) and reset the state to a guest view."""
        if self.is_backend_ready():
            assert self.backend is not None  # noqa: S101
            try:
                await self.backend.auth.sign_out()
            except BackendError:
                _logger.warning("Backend sign-out failed", exc_info=True)
        if self.state_store is not None:
            self.state_store.update_state(current_user=None, role=Role.GUEST.value, favorites=[])

    async def enforce_role(self, *roles: str) -> bool:
        """Check that the signed-in user holds one of *roles*.

        Returns ``False`` when nobody is signed in or the role is not
        allowed. A user document without a role is treated as broken: the
        user is signed out and ``False`` returned.
        """
        if not roles:
            raise ValueError("enforce_role() needs at least one role")
        if self.current_user is None:
            return False
        role = await self.get_current_user_role()
        if role is None:
            _logger.warning("User %s has no role, signing out", self.current_user.uid)
            await self.sign_out()
            return False
        return role in roles

    async def send_password_reset(self, email: str) -> None:
        await self._require_backend().auth.send_password_reset(email.strip())

    def watch_auth_state(self, listener: AuthStateListener) -> Callable[[], None]:
        """Subscribe to sign-in / sign-out transitions of the backend auth handle."""
        return self._require_backend().auth.on_auth_state_changed(listener)
