import platform
from typing import Type

from cliptrail.clipboard.base import ClipboardBackend


def get_clipboard_class() -> Type[ClipboardBackend]:
    system = platform.system()

    if system == "Windows":
        from cliptrail.clipboard.windows import WindowsClipboard
        return WindowsClipboard
    elif system == "Linux":
        from cliptrail.clipboard.linux import LinuxClipboard
        return LinuxClipboard
    elif system == "Darwin":
        from cliptrail.clipboard.macos import MacOSClipboard
        return MacOSClipboard
    else:
        raise NotImplementedError(f"Platform '{system}' is not supported")


def get_clipboard_backend() -> ClipboardBackend:
    clipboard_class = get_clipboard_class()
    return clipboard_class()
