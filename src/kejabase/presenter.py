"""Headless listings presenter.

Turns the filtered listings of a :class:`~kejabase.state.store.StateStore`
into view models and hands them to a sink. Drawing them (HTML, terminal,
anything else) is the sink's business.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from kejabase.models.listing import Listing
from kejabase.models.state import AppState
from kejabase.state.store import StateStore

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ListingCard:
    listing: Listing
    is_favorite: bool


@dataclass(frozen=True, slots=True)
class ListingsView:
    """Everything a renderer needs for one frame."""

    cards: tuple[ListingCard, ...]
    total: int
    error: str | None
    role: str | None


ListingsSink = Callable[[ListingsView], None]


class ListingsPresenter:
    """UI service: re-renders the listings view on every state change."""

    def __init__(self, sink: ListingsSink | None = None) -> None:
        self.state_store: StateStore | None = None
        self._sink = sink
        self._unsubscribe: Callable[[], None] | None = None
        self.last_view: ListingsView | None = None

    def set_state_store(self, state_store: StateStore) -> ListingsPresenter:
        if self._unsubscribe is not None:
            self._unsubscribe()
        self.state_store = state_store
        self._unsubscribe = state_store.subscribe(self._on_state_changed)
        return self

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_state_changed(self, _state: AppState) -> None:
        self.render_listings()

    def render_listings(self) -> ListingsView | None:
        """Build the current view and pass it to the sink."""
        store = self.state_store
        if store is None:
            _logger.debug("No state store wired yet, nothing to render")
            return None
        state = store.get_state()
        favorites = set(state.favorites)
        cards = tuple(ListingCard(listing, listing.id in favorites) for listing in store.apply_filters())
        view = ListingsView(cards=cards, total=len(state.listings), error=state.error, role=state.role)
        self.last_view = view
        if self._sink is not None:
            self._sink(view)
        return view
