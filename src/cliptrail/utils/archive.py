"""Serialization of stored clipboard payloads.

Payloads are stored as JSON with base64 encoded representation bytes. Two
layouts exist on disk:

* current: a list of ``{format: base64}`` objects, one per clipboard item
* legacy: a single ``{format: base64}`` object from single-item captures

Decoding runs an ordered chain of detectors and yields a tagged archive, or
``None`` when no detector recognises the blob.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

from cliptrail.models.entry import RepresentationMap

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentArchive:
    items: List[RepresentationMap]


@dataclass(frozen=True)
class LegacyArchive:
    item: RepresentationMap


Archive = Union[CurrentArchive, LegacyArchive]


def _encode_map(item: RepresentationMap) -> dict:
    return {fmt: base64.b64encode(data).decode("ascii") for fmt, data in item.items()}


def _decode_map(raw: object) -> RepresentationMap:
    if not isinstance(raw, dict) or not raw:
        raise ValueError("representation map must be a non-empty object")
    decoded: RepresentationMap = {}
    for fmt, value in raw.items():
        if not isinstance(fmt, str) or not isinstance(value, str):
            raise ValueError("representation map entries must be strings")
        decoded[fmt] = base64.b64decode(value, validate=True)
    return decoded


def encode_payload(items: Sequence[RepresentationMap]) -> str:
    if not items:
        raise ValueError("cannot archive an empty payload")
    return json.dumps([_encode_map(item) for item in items], separators=(",", ":"))


def encode_legacy_payload(item: RepresentationMap) -> str:
    return json.dumps(_encode_map(item), separators=(",", ":"))


def _detect_current(document: object) -> Optional[Archive]:
    if not isinstance(document, list) or not document:
        return None
    return CurrentArchive(items=[_decode_map(raw) for raw in document])


def _detect_legacy(document: object) -> Optional[Archive]:
    if not isinstance(document, dict):
        return None
    return LegacyArchive(item=_decode_map(document))


DETECTORS: Sequence[Callable[[object], Optional[Archive]]] = (
    _detect_current,
    _detect_legacy,
)


def decode_payload(blob: Union[str, bytes, None]) -> Optional[Archive]:
    if not blob:
        return None
    try:
        document = json.loads(blob)
    except (TypeError, ValueError):
        logger.debug("Stored payload is not JSON; skipping detectors")
        return None

    for detector in DETECTORS:
        try:
            archive = detector(document)
        except (ValueError, binascii.Error) as e:
            logger.debug(f"{detector.__name__} rejected payload: {e}")
            continue
        if archive is not None:
            return archive
    return None


def archive_items(archive: Optional[Archive]) -> List[RepresentationMap]:
    if isinstance(archive, CurrentArchive):
        return list(archive.items)
    if isinstance(archive, LegacyArchive):
        return [archive.item]
    return []
