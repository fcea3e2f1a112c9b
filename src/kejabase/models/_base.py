"""Base model for kejabase documents and state records.

Every model inherits from :class:`KejabaseBaseModel` which provides:

* ``alias_generator=to_camel`` so camelCase document keys map
  automatically to snake_case fields (``displayName`` -> ``display_name``).
* ``populate_by_name=True`` so Python callers may use field names.
* A ``model_validator(mode="before")`` that drops ``None`` values and
  blank strings so the field default is used instead.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


class KejabaseBaseModel(BaseModel):
    """Base for immutable document-derived records."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_values(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        return KejabaseBaseModel._clean_dict(values)
