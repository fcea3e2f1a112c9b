"""In-process backend.

Implements the backend protocols on plain dictionaries. Used for offline
runs (no project configured) and as the collaborator double in tests.
"""

from __future__ import annotations

import copy
import logging
import secrets
import string
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from kejabase.backend.base import (
    COLLECTION_NAMES,
    SERVER_TIMESTAMP,
    AuthListeners,
    AuthStateListener,
    Document,
)
from kejabase.exceptions import AuthenticationError, BackendError
from kejabase.models.user import UserIdentity

_logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_letters + string.digits


def new_document_id() -> str:
    """Random 20-character document id."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(20))


def _resolve_server_values(data: Mapping[str, Any], now: datetime) -> dict[str, Any]:
    resolved: dict[str, Any] = {}
    for key, value in data.items():
        if value is SERVER_TIMESTAMP:
            resolved[key] = now
        elif isinstance(value, Mapping):
            resolved[key] = _resolve_server_values(value, now)
        else:
            resolved[key] = copy.deepcopy(value)
    return resolved


def _lookup(data: Mapping[str, Any], field_path: str) -> Any:
    current: Any = data
    for part in field_path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


class MemoryQuery:
    def __init__(self, collection: MemoryCollection, filters: tuple[tuple[str, Any], ...]) -> None:
        self._collection = collection
        self._filters = filters

    def where(self, field_path: str, value: Any) -> MemoryQuery:
        return MemoryQuery(self._collection, (*self._filters, (field_path, value)))

    async def get(self) -> list[Document]:
        self._collection.check_failure()
        return [
            doc
            for doc in self._collection.snapshot()
            if all(_lookup(doc.data, path) == value for path, value in self._filters)
        ]


class MemoryCollection:
    """A named collection of documents kept in insertion order."""

    def __init__(self, name: str, clock: Callable[[], datetime]) -> None:
        self.name = name
        self._clock = clock
        self._docs: dict[str, dict[str, Any]] = {}
        self.failure: BaseException | None = None

    def check_failure(self) -> None:
        """Raise the injected failure, if any."""
        if self.failure is not None:
            raise self.failure

    def snapshot(self) -> list[Document]:
        return [Document(id=doc_id, data=copy.deepcopy(data)) for doc_id, data in self._docs.items()]

    def seed(self, documents: Iterable[Mapping[str, Any]]) -> None:
        """Insert documents synchronously; an ``id`` key is used as document id."""
        for document in documents:
            data = dict(document)
            doc_id = str(data.pop("id", None) or new_document_id())
            self._docs[doc_id] = _resolve_server_values(data, self._clock())

    async def get_all(self) -> list[Document]:
        self.check_failure()
        return self.snapshot()

    async def get(self, doc_id: str) -> Document | None:
        self.check_failure()
        data = self._docs.get(doc_id)
        if data is None:
            return None
        return Document(id=doc_id, data=copy.deepcopy(data))

    async def set(self, doc_id: str, data: Mapping[str, Any]) -> None:
        self.check_failure()
        self._docs[doc_id] = _resolve_server_values(data, self._clock())

    async def add(self, data: Mapping[str, Any]) -> str:
        self.check_failure()
        doc_id = new_document_id()
        self._docs[doc_id] = _resolve_server_values(data, self._clock())
        return doc_id

    async def update(self, doc_id: str, data: Mapping[str, Any]) -> None:
        self.check_failure()
        if doc_id not in self._docs:
            raise BackendError(f"No document to update: {self.name}/{doc_id}", code="not-found")
        self._docs[doc_id].update(_resolve_server_values(data, self._clock()))

    async def delete(self, doc_id: str) -> None:
        self.check_failure()
        self._docs.pop(doc_id, None)

    def where(self, field_path: str, value: Any) -> MemoryQuery:
        return MemoryQuery(self, ((field_path, value),))


class MemoryAuth:
    """Email/password accounts held in memory."""

    def __init__(self) -> None:
        self._accounts: dict[str, tuple[str, UserIdentity]] = {}
        self._current: UserIdentity | None = None
        self._listeners = AuthListeners()

    @property
    def current_user(self) -> UserIdentity | None:
        return self._current

    def add_account(self, email: str, password: str, *, uid: str | None = None) -> UserIdentity:
        user = UserIdentity(uid=uid or new_document_id(), email=email)
        self._accounts[email.lower()] = (password, user)
        return user

    def set_current_user(self, user: UserIdentity | None) -> None:
        """Switch the signed-in user and notify listeners."""
        self._current = user
        self._listeners.fire(user, _logger)

    async def sign_in(self, email: str, password: str) -> UserIdentity:
        account = self._accounts.get(email.lower())
        if account is None or account[0] != password:
            raise AuthenticationError("Invalid email or password", code="invalid-credential")
        self.set_current_user(account[1])
        return account[1]

    async def sign_up(self, email: str, password: str) -> UserIdentity:
        if email.lower() in self._accounts:
            raise AuthenticationError("Email already in use", code="email-already-in-use")
        if len(password) < 6:
            raise AuthenticationError("Password should be at least 6 characters", code="weak-password")
        user = self.add_account(email, password)
        self.set_current_user(user)
        return user

    async def sign_out(self) -> None:
        self.set_current_user(None)

    async def send_password_reset(self, email: str) -> None:
        if email.lower() not in self._accounts:
            raise AuthenticationError("No account for that email", code="user-not-found")
        _logger.info("Password reset requested for %s", email)

    def on_auth_state_changed(self, listener: AuthStateListener) -> Callable[[], None]:
        return self._listeners.add(listener)


class MemoryBackend:
    """Backend collaborator living entirely in this process."""

    def __init__(
        self,
        *,
        collection_names: Iterable[str] = COLLECTION_NAMES,
        clock: Callable[[], datetime] | None = None,
        ready: bool = True,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))
        self.ready = ready
        self.auth = MemoryAuth()
        self.collections: dict[str, MemoryCollection] = {
            name: MemoryCollection(name, self._clock) for name in collection_names
        }

    def server_timestamp(self) -> Any:
        return SERVER_TIMESTAMP
