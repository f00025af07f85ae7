import logging
from contextlib import nullcontext
from dataclasses import dataclass
from typing import List, Optional

from cliptrail.clipboard import ClipboardBackend
from cliptrail.clipboard.formats import strip_source
from cliptrail.models.entry import RepresentationMap
from cliptrail.services.watcher import ClipboardWatcher
from cliptrail.utils.archive import archive_items, decode_payload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RestoreResult:
    written: bool
    item_count: int
    used_fallback: bool


class RestoreWriter:
    """Puts a stored payload back on the clipboard.

    Every stored item becomes one clipboard item with all of its
    representations except the source-application marker. When the blob
    cannot be decoded, or the platform rejects the write, the entry's display
    text is written as plain text instead.
    """

    def __init__(self, backend: ClipboardBackend, watcher: Optional[ClipboardWatcher] = None) -> None:
        self.backend = backend
        self.watcher = watcher

    def restore(self, payload_blob: Optional[str], display_text: str) -> RestoreResult:
        items = self.prepare_items(payload_blob)
        guard = self.watcher.suppressed() if self.watcher else nullcontext()

        with guard:
            if items and self.backend.write_items(items):
                logger.info(f"Restored {len(items)} item(s) to the clipboard")
                return RestoreResult(written=True, item_count=len(items), used_fallback=False)

            if items:
                logger.warning("Native restore failed; writing display text instead")
            else:
                logger.info("Stored payload not decodable; writing display text instead")
            written = self.backend.write_text(display_text)

        if not written:
            logger.error("Plain-text fallback write failed")
        return RestoreResult(written=written, item_count=1 if written else 0, used_fallback=True)

    def clear_clipboard(self) -> None:
        guard = self.watcher.suppressed() if self.watcher else nullcontext()
        with guard:
            try:
                self.backend.clear()
            except Exception as e:
                logger.warning(f"Clearing the clipboard failed: {e}")

    @staticmethod
    def prepare_items(payload_blob: Optional[str]) -> List[RepresentationMap]:
        items = []
        for item in archive_items(decode_payload(payload_blob)):
            cleaned = strip_source(item)
            if cleaned:
                items.append(cleaned)
        return items
