from cliptrail.models.entry import (
    ContentKind,
    EntrySummary,
    HistoryEntry,
    RepresentationMap,
    new_entry_id,
)

__all__ = [
    'ContentKind',
    'EntrySummary',
    'HistoryEntry',
    'RepresentationMap',
    'new_entry_id',
]
