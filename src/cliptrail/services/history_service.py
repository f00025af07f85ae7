"""History controller for cliptrail.

Owns the in-memory view window over the durable history and exposes the
operations a presentation layer needs: paging, search, promote, reorder,
delete, clear and restore. Store mutations are queued on a single writer
thread so they apply in submission order; page loads run on a reader pool.
The in-memory window is updated first and stays authoritative for the
session even when a store write fails.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

from cliptrail.database import DuplicateFingerprintError, HistoryStore
from cliptrail.database.base import matches_query
from cliptrail.models.entry import EntrySummary, HistoryEntry, RepresentationMap
from cliptrail.services.restore import RestoreResult, RestoreWriter
from cliptrail.services.watcher import CaptureEvent
from cliptrail.utils.archive import archive_items, decode_payload
from cliptrail.utils.fingerprint import fingerprint

logger = logging.getLogger(__name__)

REORDER_STEP = timedelta(milliseconds=1)


class PaginationState(str, Enum):
    IDLE = "idle"
    LOADING_PAGE = "loading_page"
    EXHAUSTED = "exhausted"


class HistoryController:

    def __init__(
        self,
        store: HistoryStore,
        *,
        restore_writer: Optional[RestoreWriter] = None,
        page_size: int = 20,
        max_in_memory: int = 100,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be > 0")
        self.store = store
        self.restore_writer = restore_writer
        self.page_size = page_size
        self.max_in_memory = max(max_in_memory, page_size)
        self._clock = clock

        self._lock = threading.RLock()
        self._items: List[EntrySummary] = []
        self._state = PaginationState.IDLE
        self._offset = 0
        self._generation = 0
        self.current_page = 0
        self.query: Optional[str] = None
        self.should_scroll_to_top = False

        self._listeners: List[Callable[["HistoryController"], None]] = []
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cliptrail-writer")
        self._reader = ThreadPoolExecutor(max_workers=2, thread_name_prefix="cliptrail-reader")

    # ------------------------------------------------------------------
    # View state
    # ------------------------------------------------------------------
    @property
    def items(self) -> List[EntrySummary]:
        with self._lock:
            return list(self._items)

    @property
    def state(self) -> PaginationState:
        return self._state

    @property
    def is_loading(self) -> bool:
        return self._state is PaginationState.LOADING_PAGE

    @property
    def has_more(self) -> bool:
        return self._state is not PaginationState.EXHAUSTED

    def subscribe(self, callback: Callable[["HistoryController"], None]) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def acknowledge_scroll(self) -> None:
        self.should_scroll_to_top = False

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(self)
            except Exception:
                logger.exception("History listener failed")

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------
    def load_more(self) -> Optional[Future]:
        """Request the next page.

        Returns ``None`` when a load is already running or the history is
        exhausted; otherwise a future resolving to the fetched page.
        """
        with self._lock:
            if self._state is not PaginationState.IDLE:
                return None
            self._state = PaginationState.LOADING_PAGE
            offset = self._offset
            query = self.query
            generation = self._generation

        return self._reader.submit(self._load_page, offset, query, generation)

    def _load_page(self, offset: int, query: Optional[str], generation: int) -> List[EntrySummary]:
        # One extra row tells whether another page exists.
        try:
            rows = self.store.fetch_page(offset, self.page_size + 1, query)
        except Exception:
            logger.exception("Loading history page failed")
            with self._lock:
                if generation == self._generation:
                    self._state = PaginationState.IDLE
            self._notify()
            raise

        page = rows[:self.page_size]
        has_more = len(rows) > self.page_size

        with self._lock:
            if generation != self._generation:
                return page

            # rows already in the window were counted when they were added
            known = {item.id for item in self._items}
            fresh = [item for item in page if item.id not in known]
            self._items.extend(fresh)
            self._offset += len(fresh)
            self.current_page += 1
            self._state = PaginationState.IDLE if has_more else PaginationState.EXHAUSTED
            logger.debug(f"Loaded page {self.current_page} with {len(page)} entries")

        self._notify()
        return page

    def reset_pagination(self, query: Optional[str] = None) -> Optional[Future]:
        """Drop the window and reload page 0, optionally with a new search query."""
        with self._lock:
            self._generation += 1
            self._items.clear()
            self._offset = 0
            self.current_page = 0
            self.query = query or None
            self._state = PaginationState.IDLE
        return self.load_more()

    def prune_to_first_page(self) -> None:
        """Trim the window to the first page when the UI goes away."""
        with self._lock:
            self._generation += 1
            del self._items[self.page_size:]
            self._offset = len(self._items)
            self.current_page = 1
            self._state = PaginationState.IDLE
            self.should_scroll_to_top = True
        logger.debug("Pruned history window to the first page")
        self._notify()

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------
    def handle_capture(self, event: CaptureEvent) -> Future:
        key = fingerprint(event.representations)
        return self._writer.submit(self._persist_capture, event, key)

    def _persist_capture(self, event: CaptureEvent, key: str) -> str:
        try:
            existing = self.store.find_by_fingerprint(key)
        except Exception as e:
            logger.error(f"Fingerprint lookup failed: {e}")
            existing = self._loaded_id_for(key)

        if existing is not None:
            if self._promote(existing, event.captured_at, event.source_application) is not False:
                return existing
            # the claim outlived its entry; free it and store the capture anew
            self._discard(existing)
            try:
                self.store.release_fingerprint(key, existing)
            except Exception as e:
                logger.error(f"Releasing fingerprint of {existing} failed: {e}")

        entry = HistoryEntry(
            display_text=event.display_text,
            created_at=event.captured_at,
            sort_key=event.captured_at,
            content_kind=event.content_kind,
            fingerprint=key,
            source_application=event.source_application,
            raw_payload=event.representations,
        )
        summary = self._add_to_head(entry.summary())
        if summary.sort_key != entry.sort_key:
            entry = entry.model_copy(update={"sort_key": summary.sort_key})

        try:
            self.store.insert(entry)
        except DuplicateFingerprintError as e:
            # Lost a race with an identical capture: fold into the winner.
            logger.info(f"Duplicate capture folded into {e.existing_id}")
            self._discard(summary.id)
            self._promote(e.existing_id, event.captured_at, event.source_application)
            return e.existing_id
        except Exception as e:
            logger.error(f"Persisting capture {entry.id} failed: {e}")
            return entry.id

        logger.info(f"Stored new {entry.content_kind.value} entry {entry.id}")
        return entry.id

    def _loaded_id_for(self, key: str) -> Optional[str]:
        with self._lock:
            for item in self._items:
                if item.fingerprint == key:
                    return item.id
        return None

    def _above_head(self, sort_key: datetime) -> datetime:
        if self._items:
            return max(sort_key, self._items[0].sort_key + REORDER_STEP)
        return sort_key

    def _add_to_head(self, summary: EntrySummary) -> EntrySummary:
        """Insert a new capture at index 0, keyed above the current head."""
        with self._lock:
            if not matches_query(summary.display_text, self.query):
                return summary
            summary = summary.with_sort_key(self._above_head(summary.sort_key))
            self._items.insert(0, summary)
            self._offset += 1
            self.should_scroll_to_top = True
            overflow = len(self._items) > self.max_in_memory

        if overflow:
            self.prune_to_first_page()
        else:
            self._notify()
        return summary

    def _discard(self, entry_id: str) -> bool:
        with self._lock:
            for index, item in enumerate(self._items):
                if item.id == entry_id:
                    del self._items[index]
                    self._offset = max(self._offset - 1, 0)
                    return True
        return False

    def _promote(self, entry_id: str, sort_key: datetime,
                 source_application: Optional[str]) -> Optional[bool]:
        """Move an existing entry to the head for a repeat capture.

        Returns the store's ``update_sort_key`` result, ``None`` when the
        store write failed.
        """
        with self._lock:
            index = self._index_of(entry_id)
            current = self._items.pop(index) if index is not None else None
        if current is None:
            current = self.store.fetch_summary(entry_id)

        if current is not None:
            with self._lock:
                if matches_query(current.display_text, self.query):
                    sort_key = self._above_head(sort_key)
                    updated = current.with_sort_key(sort_key, source_application=source_application)
                    self._items.insert(0, updated)
                    if index is None:
                        self._offset += 1
                elif index is not None:
                    self._offset = max(self._offset - 1, 0)
                self.should_scroll_to_top = True
            self._notify()

        try:
            return self.store.update_sort_key(entry_id, sort_key, source_application=source_application)
        except Exception as e:
            logger.error(f"Persisting promotion of {entry_id} failed: {e}")
            return None

    def _index_of(self, entry_id: str) -> Optional[int]:
        for index, item in enumerate(self._items):
            if item.id == entry_id:
                return index
        return None

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    def promote_to_top(self, entry_id: str) -> Optional[Future]:
        with self._lock:
            index = self._index_of(entry_id)
            if index is None:
                logger.debug(f"promote_to_top: {entry_id} is not in the window")
                return None
            sort_key = self._next_head_key()
            item = self._items.pop(index).with_sort_key(sort_key)
            self._items.insert(0, item)

        self._notify()
        return self._submit_write(self.store.update_sort_key, entry_id, sort_key)

    def _next_head_key(self) -> datetime:
        return self._above_head(self._clock())

    def move_item(self, source: int, destination: int) -> Optional[Future]:
        """Drag reorder inside the window.

        Positions ``0..max(source, destination)`` are re-keyed one step apart
        below a baseline at least as new as the current head, so the durable
        order matches the window regardless of the absolute values chosen.
        """
        with self._lock:
            count = len(self._items)
            if not (0 <= source < count and 0 <= destination < count) or source == destination:
                return None

            baseline = max(self._clock(), self._items[0].sort_key)
            item = self._items.pop(source)
            self._items.insert(destination, item)

            changed = []
            for position in range(max(source, destination) + 1):
                sort_key = baseline - REORDER_STEP * position
                current = self._items[position]
                if current.sort_key != sort_key:
                    self._items[position] = current.with_sort_key(sort_key)
                    changed.append((current.id, sort_key))

        self._notify()
        return self._writer.submit(self._persist_sort_keys, changed)

    def _persist_sort_keys(self, changed) -> int:
        persisted = 0
        for entry_id, sort_key in changed:
            try:
                if self.store.update_sort_key(entry_id, sort_key):
                    persisted += 1
            except Exception as e:
                logger.error(f"Persisting sort key of {entry_id} failed: {e}")
        return persisted

    def delete_item(self, entry_id: str) -> Future:
        self._discard(entry_id)
        self._notify()
        logger.info(f"Deleting entry {entry_id}")
        return self._submit_write(self.store.delete, entry_id)

    def clear_all(self) -> Future:
        """Forget every entry and empty the OS clipboard."""
        with self._lock:
            self._generation += 1
            self._items.clear()
            self._offset = 0
            self.current_page = 0
            self._state = PaginationState.IDLE

        if self.restore_writer is not None:
            self.restore_writer.clear_clipboard()
        self._notify()
        logger.info("Clearing clipboard history")
        return self._submit_write(self.store.clear_all)

    def fetch_payload(self, entry_id: str) -> Optional[List[RepresentationMap]]:
        blob = self.store.fetch_payload(entry_id)
        if blob is None:
            return None
        return archive_items(decode_payload(blob))

    def restore(self, entry_id: str, promote: bool = True) -> Optional[RestoreResult]:
        """Write an entry back to the clipboard, then move it to the top."""
        if self.restore_writer is None:
            raise RuntimeError("HistoryController has no restore writer")

        summary = self._summary_for(entry_id)
        if summary is None:
            logger.warning(f"Cannot restore unknown entry {entry_id}")
            return None

        try:
            blob = self.store.fetch_payload(entry_id)
        except Exception as e:
            logger.error(f"Loading payload of {entry_id} failed: {e}")
            blob = None

        result = self.restore_writer.restore(blob, summary.display_text)
        if promote:
            if self._index_of_locked(entry_id) is None:
                with self._lock:
                    sort_key = self._next_head_key()
                self._writer.submit(self._promote, entry_id, sort_key, summary.source_application)
            else:
                self.promote_to_top(entry_id)
        return result

    def _summary_for(self, entry_id: str) -> Optional[EntrySummary]:
        with self._lock:
            index = self._index_of(entry_id)
            if index is not None:
                return self._items[index]
        return self.store.fetch_summary(entry_id)

    def _index_of_locked(self, entry_id: str) -> Optional[int]:
        with self._lock:
            return self._index_of(entry_id)

    # ------------------------------------------------------------------
    # Writer queue
    # ------------------------------------------------------------------
    def _submit_write(self, operation, *args) -> Future:
        name = getattr(operation, "__name__", "write")

        def run():
            try:
                return operation(*args)
            except Exception as e:
                logger.error(f"Store {name} failed: {e}")
                return None

        return self._writer.submit(run)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every queued store write has run."""
        self._writer.submit(lambda: None).result(timeout=timeout)

    def close(self) -> None:
        self._writer.shutdown(wait=True)
        self._reader.shutdown(wait=True)

    def __enter__(self) -> "HistoryController":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
