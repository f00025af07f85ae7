from cliptrail.clipboard.base import ClipboardBackend
from cliptrail.clipboard.factory import get_clipboard_backend, get_clipboard_class
from cliptrail.clipboard.memory import MemoryClipboard

__all__ = [
    'ClipboardBackend',
    'MemoryClipboard',
    'get_clipboard_backend',
    'get_clipboard_class',
]
