"""Booking requests for a single listing."""

from __future__ import annotations

from datetime import date

from pydantic import Field, model_validator

from kejabase.models._base import KejabaseBaseModel
from kejabase.models.listing import ListingType


class BookingRequest(KejabaseBaseModel):
    """What a signed-in user submits to book a listing.

    Dates are stored as ISO strings. ``status`` always starts as
    ``"pending"``; the host confirms or rejects it later.
    """

    listing_id: str
    listing_type: ListingType
    start_date: date
    end_date: date
    guests: int = Field(default=1, ge=1)
    special_requests: str = ""

    @model_validator(mode="after")
    def _check_dates(self) -> BookingRequest:
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    def to_document(self, user_id: str) -> dict[str, object]:
        return {
            **self.model_dump(mode="json", by_alias=True),
            "userId": user_id,
            "status": "pending",
        }
