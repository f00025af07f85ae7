from cliptrail.utils.archive import decode_payload, encode_payload
from cliptrail.utils.fingerprint import fingerprint, normalize_text

__all__ = [
    'decode_payload',
    'encode_payload',
    'fingerprint',
    'normalize_text',
]
