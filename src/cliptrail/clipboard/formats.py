from typing import Dict, Iterable, List, Mapping, Optional
from urllib.parse import unquote, urlparse

from cliptrail.models.entry import ContentKind

SOURCE_KEY = "org.nspasteboard.source"

# Ordered by preference; the first one present is the canonical text.
TEXT_FORMATS = (
    "public.utf8-plain-text",
    "NSStringPboardType",
    "text/plain;charset=utf-8",
    "text/plain;charset=utf8",
    "text/plain",
    "UTF8_STRING",
    "STRING",
    "CF_UNICODETEXT",
    "CF_TEXT",
)

IMAGE_FORMATS = {
    "public.png",
    "public.tiff",
    "public.jpeg",
    "NSTIFFPboardType",
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/bmp",
    "image/x-ms-bmp",
    "image/webp",
    "image/tiff",
    "CF_DIB",
    "CF_DIBV5",
    "CF_BITMAP",
    "PNG",
}

FILE_FORMATS = {
    "public.file-url",
    "NSFilenamesPboardType",
    "text/uri-list",
    "x-special/gnome-copied-files",
    "CF_HDROP",
}

_TEXT_LOOKUP = {name.lower() for name in TEXT_FORMATS}
_IMAGE_LOOKUP = {name.lower() for name in IMAGE_FORMATS}
_FILE_LOOKUP = {name.lower() for name in FILE_FORMATS}


def is_text_format(fmt: str) -> bool:
    return fmt.lower() in _TEXT_LOOKUP


def is_image_format(fmt: str) -> bool:
    return fmt.lower() in _IMAGE_LOOKUP


def is_file_format(fmt: str) -> bool:
    return fmt.lower() in _FILE_LOOKUP


def decode_text(data: bytes) -> str:
    """Decode a text representation, honouring UTF-16 byte order marks."""
    if data.startswith((b"\xff\xfe", b"\xfe\xff")):
        return data.decode("utf-16", errors="replace")
    text = data.decode("utf-8", errors="replace")
    if text.startswith("\ufeff"):
        text = text[1:]
    return text.rstrip("\x00")


def find_text(representations: Iterable[Mapping[str, bytes]]) -> Optional[str]:
    """Return the first plain-text representation across all items."""
    for item in representations:
        lowered = {key.lower(): key for key in item}
        for fmt in TEXT_FORMATS:
            key = lowered.get(fmt.lower())
            if key is not None and item[key]:
                return decode_text(item[key])
    return None


def classify(representations: Iterable[Mapping[str, bytes]]) -> ContentKind:
    has_image = False
    has_file = False
    has_text = False
    for item in representations:
        for fmt in item:
            if fmt == SOURCE_KEY:
                continue
            if is_image_format(fmt):
                has_image = True
            elif is_file_format(fmt):
                has_file = True
            elif is_text_format(fmt):
                has_text = True

    if has_image:
        return ContentKind.IMAGE
    if has_file:
        return ContentKind.FILE_REFERENCE
    if has_text:
        return ContentKind.PLAIN_TEXT
    return ContentKind.OPAQUE


def file_names(representations: Iterable[Mapping[str, bytes]]) -> List[str]:
    """Names of the files referenced by file-url style representations."""
    names: List[str] = []
    for item in representations:
        for fmt, data in item.items():
            if not is_file_format(fmt) or not data:
                continue
            text = decode_text(data)
            lines = [line.strip() for line in text.replace(
                "\r", "\n").split("\n") if line.strip()]
            if lines and lines[0].lower() in {"copy", "cut"}:
                lines = lines[1:]
            for entry in lines:
                if entry.startswith("#"):
                    continue
                parsed = urlparse(entry)
                path = unquote(parsed.path) if parsed.scheme == "file" else entry
                name = path.rstrip("/\\").replace("\\", "/").rsplit("/", 1)[-1]
                if name and name not in names:
                    names.append(name)
            break
    return names


def source_application(representations: Iterable[Mapping[str, bytes]]) -> Optional[str]:
    for item in representations:
        data = item.get(SOURCE_KEY)
        if data:
            value = data.decode("utf-8", errors="ignore").strip()
            if value:
                return value
    return None


def strip_source(item: Mapping[str, bytes]) -> Dict[str, bytes]:
    return {fmt: data for fmt, data in item.items() if fmt != SOURCE_KEY}
