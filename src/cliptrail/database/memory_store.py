import threading
from datetime import datetime
from typing import Dict, List, Optional

from cliptrail.database.base import (
    UNSET,
    DuplicateFingerprintError,
    HistoryStore,
    matches_query,
)
from cliptrail.models.entry import EntrySummary, HistoryEntry
from cliptrail.utils.archive import encode_payload


class MemoryHistoryStore(HistoryStore):
    """Volatile store with the same semantics as the Redis store."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._summaries: Dict[str, EntrySummary] = {}
        self._payloads: Dict[str, str] = {}
        self._fingerprints: Dict[str, str] = {}

    def find_by_fingerprint(self, fingerprint: str) -> Optional[str]:
        with self._lock:
            return self._fingerprints.get(fingerprint)

    def insert(self, entry: HistoryEntry) -> str:
        payload = encode_payload(entry.raw_payload)
        with self._lock:
            existing = self._fingerprints.get(entry.fingerprint)
            if existing is not None:
                raise DuplicateFingerprintError(entry.fingerprint, existing)
            if entry.id in self._summaries:
                raise ValueError(f"entry id {entry.id} already exists")

            self._fingerprints[entry.fingerprint] = entry.id
            self._summaries[entry.id] = entry.summary()
            self._payloads[entry.id] = payload
        return entry.id

    def fetch_page(self, offset: int, limit: int, query: Optional[str] = None) -> List[EntrySummary]:
        if limit <= 0:
            return []
        with self._lock:
            ordered = sorted(
                self._summaries.values(),
                key=lambda s: (s.sort_key, s.id),
                reverse=True,
            )
        matching = [s for s in ordered if matches_query(s.display_text, query)]
        start = max(offset, 0)
        return matching[start:start + limit]

    def fetch_summary(self, entry_id: str) -> Optional[EntrySummary]:
        with self._lock:
            return self._summaries.get(entry_id)

    def fetch_payload(self, entry_id: str) -> Optional[str]:
        with self._lock:
            return self._payloads.get(entry_id)

    def update_sort_key(self, entry_id: str, sort_key: datetime, source_application=UNSET) -> bool:
        with self._lock:
            summary = self._summaries.get(entry_id)
            if summary is None:
                return False
            changes = {}
            if source_application is not UNSET:
                changes["source_application"] = source_application
            self._summaries[entry_id] = summary.with_sort_key(sort_key, **changes)
            return True

    def release_fingerprint(self, fingerprint: str, entry_id: str) -> bool:
        with self._lock:
            if self._fingerprints.get(fingerprint) != entry_id or entry_id in self._summaries:
                return False
            del self._fingerprints[fingerprint]
            return True

    def delete(self, entry_id: str) -> bool:
        with self._lock:
            summary = self._summaries.pop(entry_id, None)
            if summary is None:
                return False
            self._payloads.pop(entry_id, None)
            if self._fingerprints.get(summary.fingerprint) == entry_id:
                del self._fingerprints[summary.fingerprint]
            return True

    def clear_all(self) -> int:
        with self._lock:
            removed = len(self._summaries)
            self._summaries.clear()
            self._payloads.clear()
            self._fingerprints.clear()
            return removed

    def count(self) -> int:
        with self._lock:
            return len(self._summaries)
