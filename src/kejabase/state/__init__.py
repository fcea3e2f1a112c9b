"""State/store layer.

This package is the single source of truth for application state: the
store merges updates, notifies observers, evaluates listing filters and
keeps the durable subset (identity, role, favorites) across restarts.
"""

from kejabase.state.filters import filter_listings
from kejabase.state.persistence import DurableStorage, JsonFileStorage, MemoryStorage
from kejabase.state.store import StateListener, StateStore

__all__ = [
    "DurableStorage",
    "JsonFileStorage",
    "MemoryStorage",
    "StateListener",
    "StateStore",
    "filter_listings",
]
