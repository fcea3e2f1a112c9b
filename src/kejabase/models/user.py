"""Authenticated principal records."""

from __future__ import annotations

from enum import StrEnum

from kejabase.models._base import KejabaseBaseModel


class Role(StrEnum):
    """Role tags stored on user documents."""

    ADMIN = "admin"
    BNB = "bnb"
    PROVIDER = "provider"
    HUNTER = "hunter"
    GUEST = "guest"


class UserIdentity(KejabaseBaseModel):
    """Identity of the signed-in user as reported by the auth handle."""

    uid: str
    email: str | None = None
    display_name: str | None = None
