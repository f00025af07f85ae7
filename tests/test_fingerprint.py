import hashlib

from cliptrail.clipboard.formats import SOURCE_KEY
from cliptrail.utils.fingerprint import fingerprint, normalize_text

PNG = b"\x89PNG\r\n\x1a\nfake-png-body"
TIFF = b"II*\x00fake-tiff-body"


def test_text_fingerprint_uses_normalized_text():
    assert fingerprint([{"public.utf8-plain-text": b"Hello"}]) == "text:Hello"


def test_trailing_whitespace_does_not_change_fingerprint():
    first = fingerprint([{"public.utf8-plain-text": b"Hello"}])
    second = fingerprint([{"public.utf8-plain-text": b"Hello "}])
    assert first == second == "text:Hello"


def test_line_endings_and_tabs_are_unified():
    windows = fingerprint([{"text/plain": b"a\r\nb\t\tc"}])
    unix = fingerprint([{"public.utf8-plain-text": b"a\nb c"}])
    assert windows == unix == "text:a\nb c"


def test_normalize_text_collapses_runs_but_keeps_newlines():
    assert normalize_text("  one   two\r\n\tthree  \r") == "one two\n three"


def test_utf16_text_matches_utf8_text():
    utf16 = "Grüße".encode("utf-16")
    assert fingerprint([{"text/plain": utf16}]) == fingerprint(
        [{"public.utf8-plain-text": "Grüße".encode("utf-8")}])


def test_blank_text_falls_back_to_content_hash():
    result = fingerprint([{"public.utf8-plain-text": b"   \n\t"}])
    assert not result.startswith("text:")
    assert len(result) == 64


def test_hash_is_independent_of_key_order():
    forward = {"public.png": PNG, "public.tiff": TIFF}
    backward = {"public.tiff": TIFF, "public.png": PNG}
    assert fingerprint([forward]) == fingerprint([backward])


def test_hash_matches_sorted_key_value_stream():
    digest = hashlib.sha256()
    for key, value in (("public.png", PNG), ("public.tiff", TIFF)):
        digest.update(key.encode("utf-8"))
        digest.update(value)
    assert fingerprint([{"public.tiff": TIFF, "public.png": PNG}]) == digest.hexdigest()


def test_source_key_is_ignored_by_hash():
    plain = {"public.png": PNG}
    tagged = {"public.png": PNG, SOURCE_KEY: b"com.apple.Preview"}
    assert fingerprint([plain]) == fingerprint([tagged])


def test_item_order_matters_for_multi_item_payloads():
    first = {"public.png": PNG}
    second = {"public.tiff": TIFF}
    assert fingerprint([first, second]) != fingerprint([second, first])


def test_text_in_second_item_is_still_canonical():
    items = [{"public.png": PNG}, {"public.utf8-plain-text": b"caption"}]
    assert fingerprint(items) == "text:caption"
