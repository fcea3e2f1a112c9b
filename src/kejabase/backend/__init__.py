"""Backend collaborator: interface plus in-memory and hosted implementations."""

from kejabase.backend.base import (
    COLLECTION_NAMES,
    SERVER_TIMESTAMP,
    AuthHandle,
    Backend,
    Document,
    DocumentCollection,
    DocumentQuery,
)
from kejabase.backend.memory import MemoryBackend
from kejabase.backend.rest import RestBackend

__all__ = [
    "COLLECTION_NAMES",
    "SERVER_TIMESTAMP",
    "AuthHandle",
    "Backend",
    "Document",
    "DocumentCollection",
    "DocumentQuery",
    "MemoryBackend",
    "RestBackend",
]
