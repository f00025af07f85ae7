import hashlib
import os
import shutil
import subprocess
import threading
from typing import Dict, List, Optional, Sequence

from cliptrail.clipboard.base import ClipboardBackend
from cliptrail.clipboard.formats import (
    SOURCE_KEY,
    is_file_format,
    is_image_format,
    is_text_format,
)


class LinuxClipboard(ClipboardBackend):
    """Clipboard access through ``wl-clipboard`` (Wayland) or ``xclip`` (X11).

    Neither tool exposes a change counter, so one is derived from a digest of
    the advertised targets and the text content. Both tools also hold a single
    item with a single representation per write; restores therefore write the
    most specific representation of the first item.
    """

    text_format = "text/plain;charset=utf-8"

    _PSEUDO_TARGETS = {
        "targets",
        "timestamp",
        "multiple",
        "save_targets",
        "delete",
        "include",
        "chromium/x-source-url",
    }

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counter = 0
        self._last_digest: Optional[str] = None
        self._tool = self._detect_tool()

    def _detect_tool(self) -> Optional[str]:
        if os.environ.get("WAYLAND_DISPLAY") and shutil.which("wl-paste") and shutil.which("wl-copy"):
            return "wayland"
        if shutil.which("xclip"):
            return "xclip"
        return None

    def change_count(self) -> int:
        targets = self._targets()
        text = self._read(self._text_target(targets)) if targets else None
        digest = hashlib.sha256(
            "\n".join(targets).encode("utf-8") + b"\0" + (text or b"")
        ).hexdigest()

        with self._lock:
            if digest != self._last_digest:
                self._last_digest = digest
                self._counter += 1
            return self._counter

    def list_items(self) -> List[List[str]]:
        targets = self._targets()
        return [targets] if targets else []

    def read_representation(self, index: int, fmt: str) -> Optional[bytes]:
        if index != 0:
            return None
        return self._read(fmt)

    def _write_items(self, items: Sequence[Dict[str, bytes]]) -> bool:
        representation = self._preferred(items[0])
        if representation is None:
            return False
        fmt, data = representation
        if self._tool == "wayland":
            command = ["wl-copy", "--type", fmt]
        elif self._tool == "xclip":
            command = ["xclip", "-selection", "clipboard", "-t", fmt]
        else:
            return False

        subprocess.run(command, input=data, check=True, timeout=2.0)
        return True

    def clear(self) -> None:
        if self._tool == "wayland":
            self._run_command(["wl-copy", "--clear"], timeout=1.5)
        elif self._tool == "xclip":
            subprocess.run(
                ["xclip", "-selection", "clipboard"],
                input=b"",
                check=False,
                timeout=2.0,
            )

    def _preferred(self, item: Dict[str, bytes]):
        candidates = [(fmt, data) for fmt, data in item.items()
                      if fmt != SOURCE_KEY and data]
        for predicate in (is_image_format, is_file_format, is_text_format):
            for fmt, data in candidates:
                if predicate(fmt):
                    return fmt, data
        return candidates[0] if candidates else None

    def _targets(self) -> List[str]:
        if self._tool == "wayland":
            raw = self._run_command(["wl-paste", "--list-types"], timeout=1.5)
        elif self._tool == "xclip":
            raw = self._run_command(
                ["xclip", "-selection", "clipboard", "-t", "TARGETS", "-o"],
                timeout=1.5,
            )
        else:
            return []
        return self._parse_type_list(raw)

    def _text_target(self, targets: List[str]) -> str:
        for target in targets:
            if is_text_format(target):
                return target
        return targets[0]

    def _read(self, target: str) -> Optional[bytes]:
        if self._tool == "wayland":
            command = ["wl-paste", "--type", target]
            if is_text_format(target):
                command.append("--no-newline")
            return self._run_command(command, timeout=1.5)
        if self._tool == "xclip":
            return self._run_command(
                ["xclip", "-selection", "clipboard", "-t", target, "-o"],
                timeout=1.5,
            )
        return None

    def _parse_type_list(self, data: Optional[bytes]) -> List[str]:
        if not data:
            return []
        text = data.decode("utf-8", errors="ignore")
        targets = []
        for line in text.splitlines():
            target = line.strip()
            if not target or target.lower() in self._PSEUDO_TARGETS:
                continue
            if target.isupper() and target not in {"UTF8_STRING", "STRING", "PNG"}:
                continue
            targets.append(target)
        return targets

    def _run_command(self, command: List[str], timeout: float) -> Optional[bytes]:
        try:
            result = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=True,
                timeout=timeout,
            )
            return result.stdout
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError):
            return None
