"""Hosted backend over HTTPS.

Documents are read and written through a Firestore-style REST API, and
accounts through an identity-toolkit style REST API. Both go through the
same :class:`~kejabase._transport.JsonTransport`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import quote

import aiohttp
from pydantic import BaseModel, ConfigDict, Field

from kejabase._transport import JsonTransport, Transport
from kejabase.backend._values import (
    decode_fields,
    encode_fields,
    encode_value,
    server_timestamp_paths,
)
from kejabase.backend.base import (
    COLLECTION_NAMES,
    SERVER_TIMESTAMP,
    AuthListeners,
    AuthStateListener,
    Document,
)
from kejabase.backend.memory import new_document_id
from kejabase.config import KejabaseConfig
from kejabase.exceptions import AuthenticationError, BackendError, KejabaseConfigError
from kejabase.models.user import UserIdentity

_logger = logging.getLogger(__name__)

#: Refresh id tokens this many seconds before they actually expire.
TOKEN_REFRESH_MARGIN: float = 60.0

_PAGE_SIZE = 300

# Identity API error messages -> client-facing codes.
_AUTH_ERROR_CODES: dict[str, str] = {
    "email-not-found": "invalid-credential",
    "invalid-password": "invalid-credential",
    "invalid-login-credentials": "invalid-credential",
    "email-exists": "email-already-in-use",
    "weak-password": "weak-password",
    "user-disabled": "user-disabled",
    "too-many-attempts-try-later": "too-many-requests",
    "token-expired": "unauthenticated",
    "invalid-refresh-token": "unauthenticated",
}


class AuthSession(BaseModel):
    """Tokens of the signed-in user.

    Parameters
    ----------
    user : UserIdentity
        Identity reported by the sign-in response.
    id_token : str
        Bearer token for document requests.
    refresh_token : str
        Long-lived token used to mint a new ``id_token``.
    created_at : float
        ``time.monotonic()`` timestamp of when the tokens were issued.
    ttl : float
        Lifetime of ``id_token`` in seconds.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    user: UserIdentity
    id_token: str
    refresh_token: str
    created_at: float = Field(default_factory=time.monotonic)
    ttl: float = 3600.0

    @property
    def is_expired(self) -> bool:
        return (time.monotonic() - self.created_at) >= (self.ttl - TOKEN_REFRESH_MARGIN)


def _auth_error(exc: BackendError, fallback: str) -> AuthenticationError:
    code = _AUTH_ERROR_CODES.get(exc.code, exc.code)
    return AuthenticationError(
        str(exc) or fallback,
        code=code,
        status_code=exc.status_code,
        endpoint=exc.endpoint,
    )


class RestAuth:
    """Email/password auth handle backed by the identity REST API."""

    def __init__(self, config: KejabaseConfig, transport: Transport) -> None:
        self._config = config
        self._transport = transport
        self._session: AuthSession | None = None
        self._listeners = AuthListeners()

    @property
    def current_user(self) -> UserIdentity | None:
        return self._session.user if self._session is not None else None

    def _identity_url(self, action: str) -> str:
        return f"{self._config.identity_base_url}/accounts:{action}?key={self._config.api_key}"

    async def _call_identity(self, action: str, payload: Mapping[str, Any], fallback: str) -> dict[str, Any]:
        try:
            result = await self._transport.request("POST", self._identity_url(action), payload=payload)
        except BackendError as exc:
            raise _auth_error(exc, fallback) from exc
        return result if isinstance(result, dict) else {}

    def _start_session(self, response: Mapping[str, Any]) -> UserIdentity:
        uid = response.get("localId") or response.get("user_id")
        id_token = response.get("idToken") or response.get("id_token")
        refresh_token = response.get("refreshToken") or response.get("refresh_token")
        if not uid or not id_token or not refresh_token:
            raise AuthenticationError("Incomplete sign-in response", code="internal-error")
        expires_in = response.get("expiresIn") or response.get("expires_in") or 3600
        previous = self._session.user if self._session is not None else None
        user = UserIdentity(
            uid=str(uid),
            email=response.get("email") or (previous.email if previous is not None else None),
            display_name=response.get("displayName") or (previous.display_name if previous is not None else None),
        )
        self._session = AuthSession(
            user=user,
            id_token=str(id_token),
            refresh_token=str(refresh_token),
            ttl=float(expires_in),
        )
        return user

    async def sign_in(self, email: str, password: str) -> UserIdentity:
        response = await self._call_identity(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
            "Login failed",
        )
        user = self._start_session(response)
        self._listeners.fire(user, _logger)
        return user

    async def sign_up(self, email: str, password: str) -> UserIdentity:
        response = await self._call_identity(
            "signUp",
            {"email": email, "password": password, "returnSecureToken": True},
            "Registration failed",
        )
        user = self._start_session(response)
        self._listeners.fire(user, _logger)
        return user

    async def sign_out(self) -> None:
        if self._session is None:
            return
        self._session = None
        self._listeners.fire(None, _logger)

    async def send_password_reset(self, email: str) -> None:
        await self._call_identity(
            "sendOobCode",
            {"requestType": "PASSWORD_RESET", "email": email},
            "Password reset failed",
        )

    async def id_token(self) -> str | None:
        """Return a valid id token, refreshing it first if it is about to expire."""
        session = self._session
        if session is None:
            return None
        if not session.is_expired:
            return session.id_token

        url = f"{self._config.token_base_url}/token?key={self._config.api_key}"
        try:
            response = await self._transport.request(
                "POST",
                url,
                payload={"grant_type": "refresh_token", "refresh_token": session.refresh_token},
            )
        except BackendError as exc:
            _logger.warning("Token refresh failed, signing out")
            self._session = None
            self._listeners.fire(None, _logger)
            raise _auth_error(exc, "Session expired") from exc
        self._start_session(response if isinstance(response, dict) else {})
        assert self._session is not None  # noqa: S101
        return self._session.id_token

    def on_auth_state_changed(self, listener: AuthStateListener) -> Callable[[], None]:
        return self._listeners.add(listener)


def _document_id(name: str) -> str:
    return name.rsplit("/", 1)[-1]


def _to_document(raw: Mapping[str, Any]) -> Document:
    return Document(id=_document_id(str(raw.get("name", ""))), data=decode_fields(raw.get("fields") or {}))


class RestQuery:
    """Equality query over one collection (all filters combined with AND)."""

    def __init__(self, collection: RestCollection, filters: tuple[tuple[str, Any], ...]) -> None:
        self._collection = collection
        self._filters = filters

    def where(self, field_path: str, value: Any) -> RestQuery:
        return RestQuery(self._collection, (*self._filters, (field_path, value)))

    def structured_query(self) -> dict[str, Any]:
        field_filters = [
            {
                "fieldFilter": {
                    "field": {"fieldPath": path},
                    "op": "EQUAL",
                    "value": encode_value(value),
                }
            }
            for path, value in self._filters
        ]
        query: dict[str, Any] = {"from": [{"collectionId": self._collection.name}]}
        if len(field_filters) == 1:
            query["where"] = field_filters[0]
        elif field_filters:
            query["where"] = {"compositeFilter": {"op": "AND", "filters": field_filters}}
        return query

    async def get(self) -> list[Document]:
        return await self._collection.run_query(self.structured_query())


class RestCollection:
    """One named collection of the documents API."""

    def __init__(self, backend: RestBackend, name: str) -> None:
        self._backend = backend
        self.name = name

    def _url(self, doc_id: str | None = None) -> str:
        url = f"{self._backend.documents_url}/{self.name}"
        if doc_id is not None:
            url = f"{url}/{quote(doc_id, safe='')}"
        return url

    def _resource_name(self, doc_id: str) -> str:
        return f"{self._backend.database_path}/documents/{self.name}/{doc_id}"

    async def get_all(self) -> list[Document]:
        documents: list[Document] = []
        page_token: str | None = None
        while True:
            url = f"{self._url()}?pageSize={_PAGE_SIZE}"
            if page_token:
                url = f"{url}&pageToken={quote(page_token, safe='')}"
            response = await self._backend.request("GET", url)
            for raw in response.get("documents") or []:
                documents.append(_to_document(raw))
            page_token = response.get("nextPageToken")
            if not page_token:
                return documents

    async def get(self, doc_id: str) -> Document | None:
        response = await self._backend.request("GET", self._url(doc_id), allow_not_found=True)
        if response is None:
            return None
        return _to_document(response)

    def _write(
        self,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        exists: bool | None,
        merge: bool,
    ) -> dict[str, Any]:
        write: dict[str, Any] = {
            "update": {"name": self._resource_name(doc_id), "fields": encode_fields(data)},
        }
        if merge:
            write["updateMask"] = {"fieldPaths": [key for key, value in data.items() if value is not SERVER_TIMESTAMP]}
        transforms = server_timestamp_paths(data)
        if transforms:
            write["updateTransforms"] = [
                {"fieldPath": path, "setToServerValue": "REQUEST_TIME"} for path in transforms
            ]
        if exists is not None:
            write["currentDocument"] = {"exists": exists}
        return write

    async def set(self, doc_id: str, data: Mapping[str, Any]) -> None:
        await self._backend.commit([self._write(doc_id, data, exists=None, merge=False)])

    async def add(self, data: Mapping[str, Any]) -> str:
        doc_id = new_document_id()
        await self._backend.commit([self._write(doc_id, data, exists=False, merge=False)])
        return doc_id

    async def update(self, doc_id: str, data: Mapping[str, Any]) -> None:
        await self._backend.commit([self._write(doc_id, data, exists=True, merge=True)])

    async def delete(self, doc_id: str) -> None:
        await self._backend.request("DELETE", self._url(doc_id))

    def where(self, field_path: str, value: Any) -> RestQuery:
        return RestQuery(self, ((field_path, value),))

    async def run_query(self, structured_query: Mapping[str, Any]) -> list[Document]:
        response = await self._backend.request(
            "POST",
            f"{self._backend.documents_url}:runQuery",
            payload={"structuredQuery": structured_query},
        )
        results = response if isinstance(response, list) else []
        return [_to_document(item["document"]) for item in results if isinstance(item, dict) and "document" in item]


class RestBackend:
    """Backend collaborator talking to the hosted services.

    Usage::

        async with aiohttp.ClientSession() as http:
            backend = RestBackend(config, http)
            await backend.auth.sign_in("me@example.com", "secret")
            houses = await backend.collections["houses"].get_all()
    """

    def __init__(
        self,
        config: KejabaseConfig,
        http_session: aiohttp.ClientSession | None = None,
        *,
        transport: Transport | None = None,
    ) -> None:
        if not config.uses_remote_backend:
            raise KejabaseConfigError("RestBackend requires project_id and api_key")
        if transport is None:
            if http_session is None:
                raise ValueError("Either http_session or transport is required")
            transport = JsonTransport(http_session, timeout=config.request_timeout)
        self._config = config
        self._transport: Transport = transport
        self.auth = RestAuth(config, self._transport)
        self.collections: dict[str, RestCollection] = {name: RestCollection(self, name) for name in COLLECTION_NAMES}
        self.ready = True

    @property
    def database_path(self) -> str:
        return f"projects/{self._config.project_id}/databases/(default)"

    @property
    def documents_url(self) -> str:
        return f"{self._config.firestore_base_url}/{self.database_path}/documents"

    def server_timestamp(self) -> Any:
        return SERVER_TIMESTAMP

    async def request(
        self,
        method: str,
        url: str,
        *,
        payload: Mapping[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        """Authenticated document request (anonymous when nobody is signed in)."""
        token = await self.auth.id_token()
        return await self._transport.request(
            method,
            url,
            payload=payload,
            bearer=token,
            allow_not_found=allow_not_found,
        )

    async def commit(self, writes: list[dict[str, Any]]) -> None:
        await self.request("POST", f"{self.documents_url}:commit", payload={"writes": writes})
