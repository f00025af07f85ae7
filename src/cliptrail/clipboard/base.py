import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


class ClipboardBackend(ABC):
    """Boundary to one operating system clipboard.

    A clipboard holds zero or more logical items; every item offers one or
    more representations keyed by a format identifier.
    """

    # Format identifier this platform uses for plain UTF-8 text.
    text_format = "text/plain;charset=utf-8"

    @abstractmethod
    def change_count(self) -> int:
        """Counter that moves whenever the clipboard contents change."""

    @abstractmethod
    def list_items(self) -> List[List[str]]:
        """Format identifiers available for each item currently on the clipboard."""

    @abstractmethod
    def read_representation(self, index: int, fmt: str) -> Optional[bytes]:
        pass

    @abstractmethod
    def _write_items(self, items: Sequence[Dict[str, bytes]]) -> bool:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    def write_items(self, items: Sequence[Dict[str, bytes]]) -> bool:
        """Replace the clipboard contents with ``items`` in one operation."""
        if not items:
            return False
        try:
            return self._write_items(items)
        except Exception as e:
            logger.warning(f"Clipboard write failed: {e}")
            return False

    def write_text(self, text: str) -> bool:
        return self.write_items([{self.text_format: text.encode("utf-8")}])

    def frontmost_application(self) -> Optional[str]:
        return None
