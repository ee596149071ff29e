import asyncio
from datetime import datetime, timezone

import pytest
from google.api_core import exceptions as gexc

from bookforge.chapter_ordering import (
    ChapterOrderingEngine,
    chapter_sort_key,
    move_item,
    next_order,
    sort_chapters,
)
from bookforge.errors import (
    BatchTooLargeError,
    DocumentNotFoundError,
    InvalidMoveError,
    MinimumChapterCountError,
    PermissionDeniedError,
    ReorderError,
)
from bookforge.models import Chapter


def _titles(chapters):
    return [c.title for c in chapters]


def _stored_orders(store, book_id="book_1"):
    return {
        path.rsplit("/", 1)[1]: data.get("order")
        for path, data in store.children(f"books/{book_id}/chapters").items()
    }


@pytest.fixture
def engine_for(seed_book):
    async def _make(chapters=("A", "B", "C")):
        book = seed_book(chapters=chapters)
        engine = ChapterOrderingEngine(book)
        await engine.load()
        return engine

    return _make


# -----------------------------------------------------------------------------
# Pure helpers
# -----------------------------------------------------------------------------
def test_sort_puts_unordered_chapters_last_by_creation():
    early = datetime(2024, 1, 1, tzinfo=timezone.utc)
    late = datetime(2024, 2, 1, tzinfo=timezone.utc)
    chapters = [
        Chapter(id="x", title="legacy-late", created_at=late),
        Chapter(id="y", title="second", order=2),
        Chapter(id="z", title="legacy-early", created_at=early),
        Chapter(id="w", title="first", order=1),
    ]
    assert _titles(sort_chapters(chapters)) == ["first", "second", "legacy-early", "legacy-late"]


def test_sort_key_accepts_naive_timestamps():
    naive = Chapter(id="a", created_at=datetime(2024, 1, 1))
    aware = Chapter(id="b", created_at=datetime(2024, 1, 2, tzinfo=timezone.utc))
    assert chapter_sort_key(naive) < chapter_sort_key(aware)


def test_next_order():
    assert next_order([]) == 1
    assert next_order([Chapter(order=None)]) == 1
    assert next_order([Chapter(order=3), Chapter(order=7), Chapter(order=None)]) == 8


def test_move_item_does_not_mutate():
    items = ["A", "B", "C"]
    assert move_item(items, 2, 0) == ["C", "A", "B"]
    assert items == ["A", "B", "C"]


# -----------------------------------------------------------------------------
# Loading and adding
# -----------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_load_sorts_and_selects_first(engine_for):
    engine = await engine_for(("A", "B", "C"))
    assert _titles(engine.chapters) == ["A", "B", "C"]
    assert engine.active_chapter.title == "A"


@pytest.mark.asyncio
async def test_add_chapter_appends_with_next_order(engine_for, store):
    engine = await engine_for(("A", "B"))
    chapter = await engine.add_chapter()

    assert chapter.order == 3
    assert chapter.title == "Chapter 3"
    assert _titles(engine.chapters)[-1] == "Chapter 3"
    assert store.data(f"books/book_1/chapters/{chapter.id}")["content"] == "<p>Start writing...</p>"


@pytest.mark.asyncio
async def test_add_chapter_after_gap_uses_max_order(seed_book, store):
    book = seed_book(chapters=("A",))
    store.put("books/book_1/chapters/ch9", {"title": "Late", "order": 9})
    engine = ChapterOrderingEngine(book)
    await engine.load()

    chapter = await engine.add_chapter("Epilogue")
    assert chapter.order == 10


# -----------------------------------------------------------------------------
# Moving
# -----------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_move_last_to_first_renumbers_in_one_batch(engine_for, store):
    engine = await engine_for(("A", "B", "C"))
    store.writes.clear()

    result = await engine.move(2, 0)

    assert _titles(result) == ["C", "A", "B"]
    assert [c.order for c in result] == [1, 2, 3]
    assert _stored_orders(store) == {"ch3": 1, "ch1": 2, "ch2": 3}
    commits = [w for w in store.writes if w[0] == "commit"]
    assert len(commits) == 1
    assert len(commits[0][1]) == 3
    assert engine.pending is None


@pytest.mark.asyncio
async def test_move_only_writes_changed_positions(engine_for, store):
    engine = await engine_for(("A", "B", "C", "D"))
    store.writes.clear()

    await engine.move(1, 2)

    commit = [w for w in store.writes if w[0] == "commit"][0]
    assert sorted(commit[1]) == ["books/book_1/chapters/ch2", "books/book_1/chapters/ch3"]
    assert _stored_orders(store) == {"ch1": 1, "ch2": 3, "ch3": 2, "ch4": 4}


@pytest.mark.asyncio
async def test_move_same_index_is_noop(engine_for, store):
    engine = await engine_for(("A", "B"))
    store.writes.clear()

    assert _titles(await engine.move(1, 1)) == ["A", "B"]
    assert store.writes == []


@pytest.mark.asyncio
@pytest.mark.parametrize("from_index,to_index", [(-1, 0), (0, 3), (5, 1)])
async def test_move_out_of_range_rejected(engine_for, store, from_index, to_index):
    engine = await engine_for(("A", "B", "C"))
    store.writes.clear()

    with pytest.raises(InvalidMoveError):
        await engine.move(from_index, to_index)
    assert store.writes == []


@pytest.mark.asyncio
async def test_move_failure_reverts_local_order(engine_for, store):
    engine = await engine_for(("A", "B", "C"))
    store.fail("commit")

    with pytest.raises(ReorderError):
        await engine.move(2, 0)

    assert _titles(engine.chapters) == ["A", "B", "C"]
    assert engine.pending is None
    assert _stored_orders(store) == {"ch1": 1, "ch2": 2, "ch3": 3}


@pytest.mark.asyncio
async def test_oversized_reorder_rejected_before_any_write(engine_for, store):
    titles = tuple(f"C{i}" for i in range(1, 502))
    engine = await engine_for(titles)
    store.writes.clear()

    with pytest.raises(BatchTooLargeError):
        await engine.move(500, 0)

    assert engine.pending is None
    assert engine.chapters[0].title == "C1"
    assert store.writes == []


@pytest.mark.asyncio
async def test_move_permission_failure_keeps_type(engine_for, store):
    engine = await engine_for(("A", "B"))
    store.fail("commit", exc=gexc.PermissionDenied("rules"))

    with pytest.raises(PermissionDeniedError):
        await engine.move(1, 0)
    assert _titles(engine.chapters) == ["A", "B"]


@pytest.mark.asyncio
async def test_pending_order_visible_while_in_flight(engine_for, store):
    engine = await engine_for(("A", "B", "C"))
    store.hold_writes()

    task = asyncio.ensure_future(engine.move(0, 2))
    await asyncio.sleep(0)
    assert _titles(engine.chapters) == ["B", "C", "A"]
    assert _titles(engine.confirmed) == ["A", "B", "C"]

    # A snapshot arriving mid-flight does not clobber the optimistic view.
    engine.apply_remote_snapshot(await engine.book.subcollection(Chapter).find_all())
    assert _titles(engine.chapters) == ["B", "C", "A"]

    store.release_writes()
    await task
    assert _titles(engine.chapters) == ["B", "C", "A"]
    assert engine.pending is None


# -----------------------------------------------------------------------------
# Deleting
# -----------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_delete_last_remaining_chapter_rejected(engine_for, store):
    engine = await engine_for(("Only",))
    store.writes.clear()

    with pytest.raises(MinimumChapterCountError):
        await engine.delete_chapter("ch1")
    assert store.writes == []
    assert len(engine) == 1


@pytest.mark.asyncio
async def test_delete_active_chapter_falls_back_to_first(engine_for, store):
    engine = await engine_for(("A", "B", "C"))
    engine.select("ch2")

    active = await engine.delete_chapter("ch2")

    assert active.title == "A"
    assert _titles(engine.chapters) == ["A", "C"]
    assert store.data("books/book_1/chapters/ch2") is None


@pytest.mark.asyncio
async def test_delete_inactive_chapter_keeps_selection(engine_for):
    engine = await engine_for(("A", "B", "C"))
    engine.select("ch3")

    active = await engine.delete_chapter("ch1")
    assert active.id == "ch3"


@pytest.mark.asyncio
async def test_delete_unknown_chapter(engine_for):
    engine = await engine_for(("A", "B"))
    with pytest.raises(DocumentNotFoundError):
        await engine.delete_chapter("nope")


# -----------------------------------------------------------------------------
# Remote snapshots
# -----------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_remote_snapshot_replaces_view(engine_for):
    engine = await engine_for(("A", "B"))
    engine.select("ch2")

    engine.apply_remote_snapshot([
        Chapter(id="ch1", title="A", order=2),
        Chapter(id="ch9", title="Z", order=1),
    ])

    assert _titles(engine.chapters) == ["Z", "A"]
    assert engine.active_chapter.id == "ch9"


def test_select_unknown_chapter_raises(seed_book, db):
    engine = ChapterOrderingEngine(seed_book(), [Chapter(id="a", title="A", order=1)])
    with pytest.raises(DocumentNotFoundError):
        engine.select("b")
