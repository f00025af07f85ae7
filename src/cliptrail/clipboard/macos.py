from typing import Dict, List, Optional, Sequence

try:
    from AppKit import NSPasteboard, NSPasteboardItem, NSWorkspace
    from Foundation import NSData
    HAS_APPKIT = True
except ImportError:
    HAS_APPKIT = False

from cliptrail.clipboard.base import ClipboardBackend


class MacOSClipboard(ClipboardBackend):
    """General pasteboard access through PyObjC.

    The pasteboard keeps a real change counter and supports several items,
    each with any number of typed representations, so nothing is lost on a
    capture and restore round-trip.
    """

    text_format = "public.utf8-plain-text"

    def __init__(self) -> None:
        if not HAS_APPKIT:
            raise RuntimeError("pyobjc-framework-Cocoa is required on macOS")
        self._pasteboard = NSPasteboard.generalPasteboard()

    def change_count(self) -> int:
        return int(self._pasteboard.changeCount())

    def list_items(self) -> List[List[str]]:
        items = self._pasteboard.pasteboardItems() or []
        return [[str(t) for t in (item.types() or [])] for item in items]

    def read_representation(self, index: int, fmt: str) -> Optional[bytes]:
        items = self._pasteboard.pasteboardItems() or []
        if index >= len(items):
            return None
        data = items[index].dataForType_(fmt)
        if data is None:
            return None
        return bytes(data)

    def _write_items(self, items: Sequence[Dict[str, bytes]]) -> bool:
        pb_items = []
        for item in items:
            pb_item = NSPasteboardItem.alloc().init()
            for fmt, data in item.items():
                ns_data = NSData.dataWithBytes_length_(data, len(data))
                pb_item.setData_forType_(ns_data, fmt)
            pb_items.append(pb_item)

        self._pasteboard.clearContents()
        return bool(self._pasteboard.writeObjects_(pb_items))

    def clear(self) -> None:
        self._pasteboard.clearContents()

    def frontmost_application(self) -> Optional[str]:
        app = NSWorkspace.sharedWorkspace().frontmostApplication()
        if app is None:
            return None
        identifier = app.bundleIdentifier()
        return str(identifier) if identifier else None
