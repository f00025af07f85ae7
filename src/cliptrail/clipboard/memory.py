import threading
from typing import Dict, Iterable, List, Optional, Sequence, Set

from cliptrail.clipboard.base import ClipboardBackend


class MemoryClipboard(ClipboardBackend):
    """Process-local clipboard used by tests and headless runs."""

    text_format = "public.utf8-plain-text"

    def __init__(self, frontmost_app: Optional[str] = None) -> None:
        self._lock = threading.Lock()
        self._items: List[Dict[str, bytes]] = []
        self._change_count = 0
        self._unreadable: Set[str] = set()
        self.frontmost_app = frontmost_app
        self.write_count = 0
        self.fail_writes = False

    def copy(self, *items: Dict[str, bytes]) -> int:
        """Simulate another application placing ``items`` on the clipboard."""
        with self._lock:
            self._items = [dict(item) for item in items]
            self._change_count += 1
            return self._change_count

    def copy_text(self, text: str) -> int:
        return self.copy({self.text_format: text.encode("utf-8")})

    def make_unreadable(self, formats: Iterable[str]) -> None:
        self._unreadable.update(formats)

    def contents(self) -> List[Dict[str, bytes]]:
        with self._lock:
            return [dict(item) for item in self._items]

    def change_count(self) -> int:
        with self._lock:
            return self._change_count

    def list_items(self) -> List[List[str]]:
        with self._lock:
            return [list(item.keys()) for item in self._items]

    def read_representation(self, index: int, fmt: str) -> Optional[bytes]:
        if fmt in self._unreadable:
            raise OSError(f"representation {fmt!r} is not readable")
        with self._lock:
            if index >= len(self._items):
                return None
            return self._items[index].get(fmt)

    def _write_items(self, items: Sequence[Dict[str, bytes]]) -> bool:
        if self.fail_writes:
            raise OSError("clipboard is locked by another process")
        with self._lock:
            self._items = [dict(item) for item in items]
            self._change_count += 1
            self.write_count += 1
        return True

    def clear(self) -> None:
        with self._lock:
            self._items = []
            self._change_count += 1

    def frontmost_application(self) -> Optional[str]:
        return self.frontmost_app
