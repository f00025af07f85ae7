import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import win32clipboard as wc
import win32con

from cliptrail.clipboard.base import ClipboardBackend
from cliptrail.clipboard.formats import SOURCE_KEY

_STANDARD_FORMATS = {
    win32con.CF_TEXT: "CF_TEXT",
    win32con.CF_UNICODETEXT: "CF_UNICODETEXT",
    win32con.CF_OEMTEXT: "CF_OEMTEXT",
    win32con.CF_DIB: "CF_DIB",
    win32con.CF_DIBV5: "CF_DIBV5",
    win32con.CF_HDROP: "CF_HDROP",
    win32con.CF_LOCALE: "CF_LOCALE",
    win32con.CF_RIFF: "CF_RIFF",
    win32con.CF_WAVE: "CF_WAVE",
    win32con.CF_SYLK: "CF_SYLK",
    win32con.CF_DIF: "CF_DIF",
    win32con.CF_TIFF: "CF_TIFF",
}
_FORMAT_IDS = {name: fmt_id for fmt_id, name in _STANDARD_FORMATS.items()}

# GDI handles and synthesized formats that cannot round-trip as bytes.
_SKIPPED = {
    win32con.CF_BITMAP,
    win32con.CF_METAFILEPICT,
    win32con.CF_ENHMETAFILE,
    win32con.CF_PALETTE,
    win32con.CF_OEMTEXT,
    win32con.CF_LOCALE,
}


class WindowsClipboard(ClipboardBackend):
    """Win32 clipboard through pywin32.

    Windows holds exactly one item, so only the first stored item is written
    back on restore. Text is stored as UTF-8 and file drops as a uri list.
    """

    text_format = "CF_UNICODETEXT"

    def change_count(self) -> int:
        return int(wc.GetClipboardSequenceNumber())

    def list_items(self) -> List[List[str]]:
        with self._opened():
            formats = []
            fmt = wc.EnumClipboardFormats(0)
            while fmt:
                if fmt not in _SKIPPED:
                    name = self._format_name(fmt)
                    if name:
                        formats.append(name)
                fmt = wc.EnumClipboardFormats(fmt)
        return [formats] if formats else []

    def read_representation(self, index: int, fmt: str) -> Optional[bytes]:
        if index != 0:
            return None
        fmt_id = self._format_id(fmt)
        with self._opened():
            if not wc.IsClipboardFormatAvailable(fmt_id):
                return None
            data = wc.GetClipboardData(fmt_id)

        if fmt_id == win32con.CF_HDROP:
            paths = [data] if isinstance(data, str) else list(data or [])
            return "\n".join(Path(p).as_uri() for p in paths).encode("utf-8")
        if isinstance(data, str):
            return data.encode("utf-8")
        if isinstance(data, (bytes, bytearray)):
            return bytes(data)
        return None

    def _write_items(self, items: Sequence[Dict[str, bytes]]) -> bool:
        item = items[0]
        with self._opened():
            wc.EmptyClipboard()
            written = 0
            for fmt, data in item.items():
                if fmt == SOURCE_KEY:
                    continue
                fmt_id = self._format_id(fmt)
                if fmt_id == win32con.CF_HDROP:
                    continue
                if fmt_id == win32con.CF_UNICODETEXT:
                    wc.SetClipboardData(fmt_id, data.decode("utf-8", errors="replace"))
                else:
                    wc.SetClipboardData(fmt_id, data)
                written += 1
        return written > 0

    def clear(self) -> None:
        with self._opened():
            wc.EmptyClipboard()

    def _format_name(self, fmt_id: int) -> Optional[str]:
        if fmt_id in _STANDARD_FORMATS:
            return _STANDARD_FORMATS[fmt_id]
        try:
            return wc.GetClipboardFormatName(fmt_id)
        except Exception:
            return None

    def _format_id(self, fmt: str) -> int:
        if fmt in _FORMAT_IDS:
            return _FORMAT_IDS[fmt]
        return wc.RegisterClipboardFormat(fmt)

    def _opened(self):
        return _OpenClipboard()


class _OpenClipboard:
    """Open the clipboard, retrying while another process holds it."""

    def __enter__(self):
        last_error = None
        for _ in range(3):
            try:
                wc.OpenClipboard()
                return self
            except Exception as e:
                last_error = e
                time.sleep(0.05)
        raise OSError(f"clipboard is busy: {last_error}")

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            wc.CloseClipboard()
        except Exception:
            pass
