import hashlib
import re
from typing import Iterable, Mapping, Optional

from cliptrail.clipboard.formats import SOURCE_KEY, find_text

TEXT_PREFIX = "text:"

_HORIZONTAL_SPACE = re.compile(r"[^\S\n]+")


def normalize_text(text: str) -> str:
    """Unify line endings, fold horizontal whitespace runs to one space, trim."""
    unified = text.replace("\r\n", "\n").replace("\r", "\n")
    collapsed = _HORIZONTAL_SPACE.sub(" ", unified)
    return collapsed.strip()


def canonical_text(representations: Iterable[Mapping[str, bytes]]) -> Optional[str]:
    text = find_text(representations)
    if text is None:
        return None
    normalized = normalize_text(text)
    return normalized or None


def content_hash(representations: Iterable[Mapping[str, bytes]]) -> str:
    digest = hashlib.sha256()
    for item in representations:
        for key in sorted(k for k in item if k != SOURCE_KEY):
            digest.update(key.encode("utf-8"))
            digest.update(bytes(item[key]))
    return digest.hexdigest()


def fingerprint(representations: Iterable[Mapping[str, bytes]]) -> str:
    """Stable dedup key for a captured payload.

    Text payloads collapse onto their normalized canonical text, so captures
    differing only in incidental whitespace share a key. Anything else is
    keyed by a SHA-256 over its representations in sorted format order.
    """
    items = list(representations)
    text = canonical_text(items)
    if text is not None:
        return TEXT_PREFIX + text
    return content_hash(items)
