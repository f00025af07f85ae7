"""Service layer for cliptrail."""

from .history_service import HistoryController, PaginationState
from .restore import RestoreResult, RestoreWriter
from .watcher import CaptureEvent, ClipboardWatcher

__all__ = [
    "CaptureEvent",
    "ClipboardWatcher",
    "HistoryController",
    "PaginationState",
    "RestoreResult",
    "RestoreWriter",
]
