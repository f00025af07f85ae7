"""Clipboard watcher for cliptrail.

Polls the clipboard backend's change counter on a background thread and turns
every new clipboard state into a ``CaptureEvent``. The watcher never writes to
the clipboard; writers that do (the restore path) register their own change
through ``suppressed()`` so it is not captured again.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, List, Optional

from cliptrail.clipboard import ClipboardBackend
from cliptrail.clipboard import formats
from cliptrail.models.entry import ContentKind, RepresentationMap

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureEvent:
    """One new clipboard state, ready for fingerprinting and storage."""

    representations: List[RepresentationMap]
    display_text: str
    content_kind: ContentKind
    source_application: Optional[str]
    change_count: int
    captured_at: datetime


class ClipboardWatcher:

    def __init__(
        self,
        backend: ClipboardBackend,
        on_capture: Optional[Callable[[CaptureEvent], None]] = None,
        poll_interval: float = 0.5,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.backend = backend
        self.poll_interval = poll_interval
        self._on_capture = on_capture or self._default_handler
        self._clock = clock
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._poll_thread: Optional[threading.Thread] = None
        self._is_running = False
        self._last_change_count: Optional[int] = None

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Start background polling.

        Whatever is on the clipboard at start-up is treated as already seen.
        """
        with self._lock:
            if self._is_running:
                logger.debug("ClipboardWatcher already running")
                return

            self.prime()
            self._stop_event.clear()
            self._is_running = True
            self._poll_thread = threading.Thread(
                target=self._poll_loop, daemon=True, name="cliptrail-watcher")
            self._poll_thread.start()
            logger.info(f"Clipboard watcher started (interval={self.poll_interval}s)")

    def stop(self) -> None:
        with self._lock:
            if not self._is_running:
                return

            self._is_running = False
            self._stop_event.set()

        if self._poll_thread is not None:
            self._poll_thread.join(timeout=max(1.0, self.poll_interval * 2))
            self._poll_thread = None
        logger.info("Clipboard watcher stopped")

    def on_capture(self, callback: Callable[[CaptureEvent], None]) -> None:
        self._on_capture = callback

    @property
    def is_running(self) -> bool:
        return self._is_running

    def run_forever(self) -> None:
        try:
            if not self._is_running:
                self.start()

            while not self._stop_event.wait(timeout=self.poll_interval):
                continue
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def __enter__(self) -> "ClipboardWatcher":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Change tracking
    # ------------------------------------------------------------------
    def prime(self) -> None:
        with self._lock:
            try:
                self._last_change_count = self.backend.change_count()
            except Exception as e:
                logger.warning(f"Could not read clipboard change count: {e}")

    def mark_seen(self, change_count: int) -> None:
        with self._lock:
            self._last_change_count = change_count

    @contextmanager
    def suppressed(self) -> Iterator[None]:
        """Hold off polling while the caller writes the clipboard.

        The counter left behind by the write is recorded as already seen.
        """
        with self._lock:
            try:
                yield
            finally:
                try:
                    self._last_change_count = self.backend.change_count()
                except Exception as e:
                    logger.warning(f"Could not read clipboard change count: {e}")

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------
    def poll_once(self) -> Optional[CaptureEvent]:
        with self._lock:
            change_count = self.backend.change_count()
            if change_count == self._last_change_count:
                return None

            layout = self.backend.list_items()
            representations = self._read_items(layout)
            self._last_change_count = change_count

        if not representations:
            logger.debug("Clipboard changed but carries no readable representation")
            return None
        return self._build_event(representations, change_count)

    def _read_items(self, layout: List[List[str]]) -> List[RepresentationMap]:
        items: List[RepresentationMap] = []
        for index, types in enumerate(layout):
            item: RepresentationMap = {}
            for fmt in types:
                try:
                    data = self.backend.read_representation(index, fmt)
                except Exception as e:
                    logger.warning(f"Skipping unreadable representation {fmt!r}: {e}")
                    continue
                if data is not None:
                    item[fmt] = data
            if formats.strip_source(item):
                items.append(item)
        return items

    def _build_event(self, representations: List[RepresentationMap], change_count: int) -> CaptureEvent:
        captured_at = self._clock()
        kind = formats.classify(representations)
        text = formats.find_text(representations)

        if text is None or not text.strip():
            display_text = self._placeholder(kind, representations, captured_at)
        else:
            display_text = text

        source = formats.source_application(representations)
        if source is None:
            try:
                source = self.backend.frontmost_application()
            except Exception as e:
                logger.debug(f"Frontmost application lookup failed: {e}")

        logger.info(f"Clipboard copied: {kind.value}, {len(representations)} item(s)")
        return CaptureEvent(
            representations=representations,
            display_text=display_text,
            content_kind=kind,
            source_application=source,
            change_count=change_count,
            captured_at=captured_at,
        )

    @staticmethod
    def _placeholder(kind: ContentKind, representations: List[RepresentationMap],
                     captured_at: datetime) -> str:
        stamp = captured_at.strftime("%Y-%m-%d %H:%M:%S")
        if kind is ContentKind.IMAGE:
            return f"Image {stamp}"
        if kind is ContentKind.FILE_REFERENCE:
            names = formats.file_names(representations)
            if names:
                return ", ".join(names)
            return f"File {stamp}"
        return f"Data {stamp}"

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                event = self.poll_once()
            except Exception:
                logger.exception("Clipboard poll failed")
                event = None

            if event is not None:
                try:
                    self._on_capture(event)
                except Exception as e:
                    logger.error(f"Error in on_capture: {e}")

            self._stop_event.wait(self.poll_interval)

    @staticmethod
    def _default_handler(event: CaptureEvent) -> None:
        pass
