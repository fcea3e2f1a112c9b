"""Narrow interface of the backend collaborator.

The core never talks to a concrete database or identity provider. It only
relies on the structural protocols below, so the hosted REST backend, the
in-memory backend and test doubles are interchangeable.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from kejabase.models.user import UserIdentity

#: Collection names the application reads and writes.
COLLECTION_NAMES: tuple[str, ...] = (
    "users",
    "houses",
    "bnbs",
    "bookings",
    "feedback",
    "reports",
    "favorites",
)


class _ServerTimestamp:
    """Sentinel replaced by the server's commit time when a document is written."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()

AuthStateListener = Callable[[UserIdentity | None], None]


@dataclass(frozen=True)
class Document:
    """A stored document: its id plus field data."""

    id: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> dict[str, Any]:
        """Field data with the document id merged in under ``id``."""
        return {**self.data, "id": self.id}


class DocumentQuery(Protocol):
    def where(self, field_path: str, value: Any) -> DocumentQuery: ...

    async def get(self) -> list[Document]: ...


class DocumentCollection(Protocol):
    name: str

    async def get_all(self) -> list[Document]: ...

    async def get(self, doc_id: str) -> Document | None: ...

    async def set(self, doc_id: str, data: Mapping[str, Any]) -> None: ...

    async def add(self, data: Mapping[str, Any]) -> str: ...

    async def update(self, doc_id: str, data: Mapping[str, Any]) -> None: ...

    async def delete(self, doc_id: str) -> None: ...

    def where(self, field_path: str, value: Any) -> DocumentQuery: ...


class AuthHandle(Protocol):
    @property
    def current_user(self) -> UserIdentity | None: ...

    async def sign_in(self, email: str, password: str) -> UserIdentity: ...

    async def sign_up(self, email: str, password: str) -> UserIdentity: ...

    async def sign_out(self) -> None: ...

    async def send_password_reset(self, email: str) -> None: ...

    def on_auth_state_changed(self, listener: AuthStateListener) -> Callable[[], None]: ...


class Backend(Protocol):
    ready: bool
    auth: AuthHandle
    collections: Mapping[str, DocumentCollection]

    def server_timestamp(self) -> Any: ...


class AuthListeners:
    """Listener bookkeeping shared by the auth handle implementations."""

    def __init__(self) -> None:
        self._listeners: list[AuthStateListener] = []

    def add(self, listener: AuthStateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def fire(self, user: UserIdentity | None, logger: logging.Logger) -> None:
        for listener in list(self._listeners):
            try:
                listener(user)
            except Exception:
                logger.warning("Auth state listener failed", exc_info=True)
