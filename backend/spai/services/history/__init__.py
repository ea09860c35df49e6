"""
Saved history: chat messages, recipes and itineraries per user.

Kept in process memory for the lifetime of the service.
"""
from spai.services.history.store import (
    ANONYMOUS_USER,
    HistoryStore,
    PermissionDeniedError,
    RecordNotFoundError,
    get_history_store,
)

__all__ = [
    "ANONYMOUS_USER",
    "HistoryStore",
    "PermissionDeniedError",
    "RecordNotFoundError",
    "get_history_store",
]
