import threading
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from cliptrail.clipboard.formats import SOURCE_KEY
from cliptrail.database import MemoryHistoryStore, RedisHistoryStore
from cliptrail.models import ContentKind, HistoryEntry
from cliptrail.services import (
    ClipboardWatcher,
    HistoryController,
    PaginationState,
    RestoreWriter,
)

BASE = datetime(2025, 12, 20, 9, 0, 0)
PNG = b"\x89PNG\r\n\x1a\nbody"
TIFF = b"II*\x00body"


def seed(store, count):
    ids = []
    for n in range(count):
        text = f"seeded {n}"
        entry = HistoryEntry(
            display_text=text,
            created_at=BASE + timedelta(seconds=n),
            sort_key=BASE + timedelta(seconds=n),
            content_kind=ContentKind.PLAIN_TEXT,
            fingerprint=f"text:{text}",
            raw_payload=[{"public.utf8-plain-text": text.encode("utf-8")}],
        )
        ids.append(store.insert(entry))
    return ids


def build(clipboard, store, clock, page_size=3, max_in_memory=10):
    watcher = ClipboardWatcher(clipboard, poll_interval=0.01, clock=clock)
    writer = RestoreWriter(clipboard, watcher)
    controller = HistoryController(
        store,
        restore_writer=writer,
        page_size=page_size,
        max_in_memory=max_in_memory,
        clock=clock,
    )
    return SimpleNamespace(clipboard=clipboard, store=store, watcher=watcher, controller=controller)


@pytest.fixture
def ctx(clipboard, store, clock):
    context = build(clipboard, store, clock)
    yield context
    context.controller.close()


def capture(ctx, *items):
    ctx.clipboard.copy(*items)
    event = ctx.watcher.poll_once()
    assert event is not None
    entry_id = ctx.controller.handle_capture(event).result(timeout=5)
    return entry_id, event


def capture_text(ctx, text):
    return capture(ctx, {"public.utf8-plain-text": text.encode("utf-8")})


def ids_of(items):
    return [item.id for item in items]


# ----------------------------------------------------------------------
# Capture and dedup
# ----------------------------------------------------------------------
def test_repeat_text_capture_promotes_existing_entry(ctx):
    first_id, _ = capture_text(ctx, "copy me")
    capture_text(ctx, "something else")
    second_id, second = capture_text(ctx, "copy me")

    assert second_id == first_id
    assert ctx.store.count() == 2
    assert ctx.controller.items[0].id == first_id
    assert ctx.store.fetch_summary(first_id).sort_key == second.captured_at
    assert ctx.store.fetch_page(0, 1)[0].id == first_id


def test_whitespace_variants_collapse_to_one_entry(ctx):
    first_id, _ = capture_text(ctx, "Hello")
    second_id, _ = capture_text(ctx, "Hello ")

    assert first_id == second_id
    assert ctx.store.count() == 1
    assert ctx.store.fetch_summary(first_id).fingerprint == "text:Hello"
    assert len(ctx.controller.items) == 1


def test_repeat_image_capture_dedups(ctx):
    first_id, _ = capture(ctx, {"public.png": PNG, "public.tiff": TIFF})
    second_id, _ = capture(ctx, {"public.tiff": TIFF, "public.png": PNG})

    summary = ctx.store.fetch_summary(first_id)
    assert second_id == first_id
    assert ctx.store.count() == 1
    assert summary.content_kind is ContentKind.IMAGE
    assert len(summary.fingerprint) == 64


def test_repeat_capture_updates_source_application(ctx):
    entry_id, _ = capture(ctx, {"public.utf8-plain-text": b"x", SOURCE_KEY: b"com.one"})
    capture(ctx, {"public.utf8-plain-text": b"x", SOURCE_KEY: b"com.two"})

    assert ctx.store.fetch_summary(entry_id).source_application == "com.two"
    assert ctx.controller.items[0].source_application == "com.two"


def test_new_capture_requests_scroll_to_top(ctx):
    capture_text(ctx, "fresh")
    assert ctx.controller.should_scroll_to_top
    ctx.controller.acknowledge_scroll()
    assert not ctx.controller.should_scroll_to_top


def test_content_kind_is_kept_on_repeat(ctx):
    entry_id, _ = capture(ctx, {"public.png": PNG, "public.utf8-plain-text": b"caption"})
    capture(ctx, {"public.utf8-plain-text": b"caption"})

    assert ctx.store.count() == 1
    assert ctx.store.fetch_summary(entry_id).content_kind is ContentKind.IMAGE


def test_lost_insert_race_becomes_promote(clipboard, clock):
    class RacyStore(MemoryHistoryStore):
        """Misses the fingerprint once, as if another writer got in first."""

        def __init__(self):
            super().__init__()
            self.blind = False

        def find_by_fingerprint(self, fingerprint):
            if self.blind:
                self.blind = False
                return None
            return super().find_by_fingerprint(fingerprint)

    store = RacyStore()
    winner = seed(store, 1)[0]
    store.blind = True
    context = build(clipboard, store, clock)
    try:
        loser_id, _ = capture_text(context, "seeded 0")

        assert loser_id == winner
        assert store.count() == 1
        assert ids_of(context.controller.items) == [winner]
    finally:
        context.controller.close()


def test_failed_insert_keeps_session_view(clipboard, clock):
    class OfflineStore(MemoryHistoryStore):
        def insert(self, entry):
            raise ConnectionError("store offline")

    store = OfflineStore()
    context = build(clipboard, store, clock)
    try:
        capture_text(context, "not durable yet")

        assert store.count() == 0
        assert [i.display_text for i in context.controller.items] == ["not durable yet"]
    finally:
        context.controller.close()


def test_window_prunes_itself_when_too_large(clipboard, store, clock):
    context = build(clipboard, store, clock, page_size=3, max_in_memory=4)
    try:
        for n in range(5):
            capture_text(context, f"capture {n}")

        assert [i.display_text for i in context.controller.items] == [
            "capture 4", "capture 3", "capture 2"]
        assert context.controller.current_page == 1
        assert store.count() == 5
    finally:
        context.controller.close()


# ----------------------------------------------------------------------
# Pagination
# ----------------------------------------------------------------------
def test_pages_load_until_exhausted(ctx):
    ids = seed(ctx.store, 7)
    newest_first = list(reversed(ids))
    controller = ctx.controller

    controller.load_more().result(timeout=5)
    assert ids_of(controller.items) == newest_first[:3]
    assert controller.state is PaginationState.IDLE

    controller.load_more().result(timeout=5)
    assert controller.state is PaginationState.IDLE

    controller.load_more().result(timeout=5)
    assert ids_of(controller.items) == newest_first
    assert controller.state is PaginationState.EXHAUSTED
    assert not controller.has_more
    assert controller.load_more() is None


def test_exactly_one_page_is_exhausted_immediately(ctx):
    seed(ctx.store, 3)
    ctx.controller.load_more().result(timeout=5)

    assert len(ctx.controller.items) == 3
    assert ctx.controller.state is PaginationState.EXHAUSTED


def test_empty_history_is_exhausted(ctx):
    assert ctx.controller.load_more().result(timeout=5) == []
    assert ctx.controller.state is PaginationState.EXHAUSTED


def test_concurrent_load_requests_are_suppressed(clipboard, clock):
    class SlowStore(MemoryHistoryStore):
        def __init__(self):
            super().__init__()
            self.release = threading.Event()

        def fetch_page(self, offset, limit, query=None):
            self.release.wait(timeout=5)
            return super().fetch_page(offset, limit, query)

    store = SlowStore()
    seed(store, 5)
    context = build(clipboard, store, clock)
    try:
        pending = context.controller.load_more()
        assert context.controller.is_loading
        assert context.controller.load_more() is None

        store.release.set()
        pending.result(timeout=5)

        assert len(context.controller.items) == 3
        assert context.controller.state is PaginationState.IDLE
    finally:
        context.controller.close()


def test_reset_pagination_applies_search(ctx):
    seed(ctx.store, 12)
    controller = ctx.controller
    controller.load_more().result(timeout=5)

    controller.reset_pagination("seeded 1").result(timeout=5)

    assert [i.display_text for i in controller.items] == ["seeded 11", "seeded 10", "seeded 1"]
    assert controller.state is PaginationState.EXHAUSTED

    controller.reset_pagination().result(timeout=5)
    assert len(controller.items) == 3
    assert controller.query is None


def test_capture_outside_search_stays_out_of_window(ctx):
    seed(ctx.store, 2)
    ctx.controller.reset_pagination("seeded").result(timeout=5)

    capture_text(ctx, "unrelated")
    capture_text(ctx, "seeded later")

    assert [i.display_text for i in ctx.controller.items] == [
        "seeded later", "seeded 1", "seeded 0"]


def test_prune_to_first_page(ctx):
    ids = seed(ctx.store, 8)
    newest_first = list(reversed(ids))
    controller = ctx.controller
    for _ in range(3):
        controller.load_more().result(timeout=5)
    assert controller.state is PaginationState.EXHAUSTED

    controller.prune_to_first_page()

    assert ids_of(controller.items) == newest_first[:3]
    assert controller.current_page == 1
    assert controller.has_more
    assert controller.should_scroll_to_top

    controller.load_more().result(timeout=5)
    assert ids_of(controller.items) == newest_first[:6]
    assert ctx.store.count() == 8


# ----------------------------------------------------------------------
# Reordering
# ----------------------------------------------------------------------
def test_promote_to_top_moves_non_head_entry(ctx):
    seed(ctx.store, 5)
    controller = ctx.controller
    controller.load_more().result(timeout=5)
    target = controller.items[2]

    controller.promote_to_top(target.id).result(timeout=5)

    items = controller.items
    assert items[0].id == target.id
    assert items[0].sort_key == max(i.sort_key for i in items)
    assert ctx.store.fetch_page(0, 1)[0].id == target.id


def test_promote_unknown_entry_is_ignored(ctx):
    assert ctx.controller.promote_to_top("e_missing") is None


def test_move_item_is_reflected_in_store_order(ctx):
    ids = seed(ctx.store, 7)
    controller = ctx.controller
    controller.load_more().result(timeout=5)
    controller.load_more().result(timeout=5)
    window = ids_of(controller.items)

    controller.move_item(4, 1).result(timeout=5)

    expected = [window[0], window[4], window[1], window[2], window[3], window[5]]
    assert ids_of(controller.items) == expected
    assert ids_of(ctx.store.fetch_page(0, 6)) == expected
    assert ctx.store.fetch_page(6, 1)[0].id == ids[0]


def test_move_item_back_restores_original_order(ctx):
    seed(ctx.store, 6)
    controller = ctx.controller
    controller.load_more().result(timeout=5)
    controller.load_more().result(timeout=5)
    original = ids_of(controller.items)

    controller.move_item(0, 3).result(timeout=5)
    controller.move_item(3, 0).result(timeout=5)

    assert ids_of(controller.items) == original
    assert ids_of(ctx.store.fetch_page(0, 6)) == original


def test_move_item_with_bad_indices_is_ignored(ctx):
    seed(ctx.store, 3)
    ctx.controller.load_more().result(timeout=5)
    before = ids_of(ctx.controller.items)

    assert ctx.controller.move_item(0, 9) is None
    assert ctx.controller.move_item(1, 1) is None
    assert ids_of(ctx.controller.items) == before


# ----------------------------------------------------------------------
# Delete, clear, restore
# ----------------------------------------------------------------------
def test_delete_item_does_not_skip_rows_on_next_page(ctx):
    seed(ctx.store, 7)
    controller = ctx.controller
    controller.load_more().result(timeout=5)
    victim = controller.items[1].id

    assert controller.delete_item(victim).result(timeout=5)
    controller.load_more().result(timeout=5)

    assert victim not in ids_of(controller.items)
    assert ids_of(controller.items) == ids_of(ctx.store.fetch_page(0, 5))


def test_clear_all_empties_history_and_clipboard(ctx):
    capture_text(ctx, "one")
    capture_text(ctx, "two")

    assert ctx.controller.clear_all().result(timeout=5) == 2

    assert ctx.controller.items == []
    assert ctx.store.count() == 0
    assert ctx.clipboard.contents() == []
    assert ctx.watcher.poll_once() is None


def test_restore_round_trip_and_promote(ctx):
    original = {"public.utf8-plain-text": b"hello", "public.rtf": b"{\\rtf1 hello}",
                SOURCE_KEY: b"com.apple.TextEdit"}
    entry_id, _ = capture(ctx, original)
    capture_text(ctx, "later copy")

    result = ctx.controller.restore(entry_id)
    ctx.controller.flush()

    assert result.written and not result.used_fallback
    assert ctx.clipboard.contents() == [
        {"public.utf8-plain-text": b"hello", "public.rtf": b"{\\rtf1 hello}"}]
    assert ctx.controller.items[0].id == entry_id
    assert ctx.store.fetch_page(0, 1)[0].id == entry_id
    assert ctx.watcher.poll_once() is None


def test_restore_entry_outside_window(ctx):
    ids = seed(ctx.store, 5)
    ctx.controller.load_more().result(timeout=5)

    result = ctx.controller.restore(ids[0])
    ctx.controller.flush()

    assert result.written
    assert ctx.clipboard.contents() == [{"public.utf8-plain-text": b"seeded 0"}]
    assert ctx.controller.items[0].id == ids[0]
    assert ctx.store.fetch_page(0, 1)[0].id == ids[0]


def test_restore_unknown_entry(ctx):
    assert ctx.controller.restore("e_missing") is None


def test_fetch_payload_returns_representation_maps(ctx):
    entry_id, event = capture(ctx, {"public.png": PNG}, {"public.png": PNG + b"2"})
    assert ctx.controller.fetch_payload(entry_id) == event.representations


def test_listeners_are_notified(ctx):
    seen = []
    unsubscribe = ctx.controller.subscribe(lambda controller: seen.append(len(controller.items)))

    capture_text(ctx, "observed")
    unsubscribe()
    capture_text(ctx, "unobserved")

    assert seen and seen[-1] == 1


def test_fetch_payload_of_unknown_entry_is_none(ctx):
    assert ctx.controller.fetch_payload("e_missing") is None


# ----------------------------------------------------------------------
# Window and store stay in step under concurrent activity
# ----------------------------------------------------------------------
def test_capture_during_page_load_skips_no_rows(clipboard, clock):
    class GatedStore(MemoryHistoryStore):
        """Holds page reads until the gate opens, once armed."""

        def __init__(self):
            super().__init__()
            self.armed = False
            self.gate = threading.Event()

        def fetch_page(self, offset, limit, query=None):
            if self.armed:
                self.gate.wait(timeout=5)
            return super().fetch_page(offset, limit, query)

    store = GatedStore()
    seed(store, 7)
    context = build(clipboard, store, clock)
    controller = context.controller
    try:
        controller.load_more().result(timeout=5)

        store.armed = True
        pending = controller.load_more()
        capture_text(context, "fresh capture")
        store.gate.set()
        pending.result(timeout=5)

        while True:
            future = controller.load_more()
            if future is None:
                break
            future.result(timeout=5)

        assert controller.state is PaginationState.EXHAUSTED
        assert ids_of(controller.items) == ids_of(store.fetch_page(0, 10))
        assert len(controller.items) == 8
    finally:
        controller.close()


def test_capture_queued_behind_promote_stays_on_top(ctx):
    seed(ctx.store, 3)
    controller = ctx.controller
    controller.load_more().result(timeout=5)

    ctx.clipboard.copy_text("new text")
    event = ctx.watcher.poll_once()
    controller.promote_to_top(controller.items[2].id).result(timeout=5)
    controller.handle_capture(event).result(timeout=5)

    assert controller.items[0].display_text == "new text"
    assert ids_of(controller.items) == ids_of(ctx.store.fetch_page(0, 4))


def test_repeat_capture_queued_behind_promote_stays_on_top(ctx):
    seed(ctx.store, 3)
    controller = ctx.controller
    controller.load_more().result(timeout=5)

    ctx.clipboard.copy_text("seeded 1")
    event = ctx.watcher.poll_once()
    controller.promote_to_top(controller.items[2].id).result(timeout=5)
    controller.handle_capture(event).result(timeout=5)

    assert controller.items[0].display_text == "seeded 1"
    assert ids_of(controller.items) == ids_of(ctx.store.fetch_page(0, 3))


def test_stale_fingerprint_claim_does_not_swallow_capture(clipboard, clock, redis_client):
    store = RedisHistoryStore(client=redis_client, prefix="test")
    # a claim whose entry was never written
    redis_client.hset("test:fingerprints", "text:ghost", "e_gone")
    context = build(clipboard, store, clock)
    try:
        entry_id, _ = capture_text(context, "ghost")

        assert entry_id != "e_gone"
        assert store.count() == 1
        assert store.find_by_fingerprint("text:ghost") == entry_id
        assert ids_of(context.controller.items) == [entry_id]
    finally:
        context.controller.close()
