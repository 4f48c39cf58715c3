"""Storage abstractions for mergewatch."""

from .history import HistoryStore, HistoryUnavailableError
from .models import CompletionHistoryEntry, HistoryRecord

__all__ = [
    "CompletionHistoryEntry",
    "HistoryRecord",
    "HistoryStore",
    "HistoryUnavailableError",
]
