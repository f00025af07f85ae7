from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from cliptrail.models.entry import EntrySummary, HistoryEntry


class DuplicateFingerprintError(ValueError):
    """Raised when an insert would create a second active row for a fingerprint."""

    def __init__(self, fingerprint: str, existing_id: str) -> None:
        super().__init__(f"fingerprint already stored as {existing_id}")
        self.fingerprint = fingerprint
        self.existing_id = existing_id


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset()


class HistoryStore(ABC):
    """Durable, paginated clipboard history.

    Summaries and payloads are read separately so listing never loads the
    (potentially large) payload blobs. Ordering is by ``sort_key`` descending,
    ties broken by id descending.
    """

    @abstractmethod
    def find_by_fingerprint(self, fingerprint: str) -> Optional[str]:
        pass

    def exists(self, fingerprint: str) -> bool:
        return self.find_by_fingerprint(fingerprint) is not None

    @abstractmethod
    def insert(self, entry: HistoryEntry) -> str:
        """Persist ``entry`` and return its id.

        Raises ``DuplicateFingerprintError`` when an active entry already
        owns the fingerprint.
        """

    @abstractmethod
    def fetch_page(self, offset: int, limit: int, query: Optional[str] = None) -> List[EntrySummary]:
        pass

    @abstractmethod
    def fetch_summary(self, entry_id: str) -> Optional[EntrySummary]:
        pass

    @abstractmethod
    def fetch_payload(self, entry_id: str) -> Optional[str]:
        """The archived payload blob, see ``cliptrail.utils.archive``."""

    @abstractmethod
    def update_sort_key(self, entry_id: str, sort_key: datetime, source_application=UNSET) -> bool:
        pass

    @abstractmethod
    def release_fingerprint(self, fingerprint: str, entry_id: str) -> bool:
        """Drop a fingerprint claim left pointing at a missing entry.

        Returns ``False`` when the claim belongs to someone else or its entry
        still exists.
        """

    @abstractmethod
    def delete(self, entry_id: str) -> bool:
        pass

    @abstractmethod
    def clear_all(self) -> int:
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    def close(self) -> None:
        pass

    def __enter__(self) -> "HistoryStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def matches_query(text: str, query: Optional[str]) -> bool:
    if not query:
        return True
    return query.casefold() in text.casefold()
