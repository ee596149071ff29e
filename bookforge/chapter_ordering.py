"""
Ordered chapter list of one book.

The engine keeps two views: ``confirmed`` (what the store has acknowledged or
pushed) and ``pending`` (a reorder applied locally while its batch write is
in flight). Readers see the pending view when there is one.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from .enums import BatchOperation
from .errors import (
    BatchTooLargeError,
    DocumentNotFoundError,
    InvalidMoveError,
    MinimumChapterCountError,
    ReorderError,
    StoreError,
    store_errors,
)
from .firestore_model import MAX_BATCH_OPERATIONS
from .models import NEW_CHAPTER_CONTENT, Book, Chapter
from .pydantic_compat import model_copy_compat

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def chapter_sort_key(chapter: Chapter):
    created = chapter.created_at or _EPOCH
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (chapter.order is None, chapter.order or 0, created, chapter.id or "")


def sort_chapters(chapters: List[Chapter]) -> List[Chapter]:
    return sorted(chapters, key=chapter_sort_key)


def next_order(chapters: List[Chapter]) -> int:
    """``max(order) + 1``, or 1 for a book without ordered chapters."""
    orders = [c.order for c in chapters if c.order is not None]
    return max(orders) + 1 if orders else 1


def move_item(items: list, from_index: int, to_index: int) -> list:
    moved = list(items)
    item = moved.pop(from_index)
    moved.insert(to_index, item)
    return moved


class ChapterOrderingEngine:
    def __init__(self, book: Book, chapters: Optional[List[Chapter]] = None):
        self.book = book
        self.confirmed: List[Chapter] = sort_chapters(chapters or [])
        self.pending: Optional[List[Chapter]] = None
        self.active_chapter_id: Optional[str] = self.confirmed[0].id if self.confirmed else None
        self._reorders_in_flight = 0

    # ------------------------------------------------------------------ #
    # Views                                                              #
    # ------------------------------------------------------------------ #

    @property
    def chapters(self) -> List[Chapter]:
        return list(self.pending if self.pending is not None else self.confirmed)

    def __len__(self) -> int:
        return len(self.chapters)

    def find(self, chapter_id: str) -> Optional[Chapter]:
        for chapter in self.chapters:
            if chapter.id == chapter_id:
                return chapter
        return None

    @property
    def active_chapter(self) -> Optional[Chapter]:
        if self.active_chapter_id is None:
            return None
        return self.find(self.active_chapter_id)

    def select(self, chapter_id: str) -> Chapter:
        chapter = self.find(chapter_id)
        if chapter is None:
            raise DocumentNotFoundError(f"Chapter {chapter_id} is not part of this book.")
        self.active_chapter_id = chapter_id
        return chapter

    def _select_fallback(self) -> None:
        chapters = self.chapters
        if self.active_chapter_id is None or self.find(self.active_chapter_id) is None:
            self.active_chapter_id = chapters[0].id if chapters else None

    # ------------------------------------------------------------------ #
    # Mutations                                                          #
    # ------------------------------------------------------------------ #

    async def load(self) -> List[Chapter]:
        with store_errors("load chapters"):
            chapters = await self.book.subcollection(Chapter).find_all()
        self.apply_remote_snapshot(chapters)
        return self.chapters

    async def add_chapter(
        self, title: Optional[str] = None, content: str = NEW_CHAPTER_CONTENT
    ) -> Chapter:
        """Append a chapter; it always sorts last."""
        chapter = Chapter(
            title=title or f"Chapter {len(self.chapters) + 1}",
            content=content,
            order=next_order(self.chapters),
        )
        with store_errors("create chapter"):
            await chapter.save(parent=self.book)
        self.confirmed = sort_chapters(self.confirmed + [chapter])
        if self.pending is not None:
            self.pending = self.pending + [chapter]
        self._select_fallback()
        logger.info(f"Chapter {chapter.id} added to book {self.book.id} at order {chapter.order}")
        return chapter

    async def move(self, from_index: int, to_index: int) -> List[Chapter]:
        """
        Move one chapter and renumber every chapter ``position + 1``.

        The changed positions go out as a single batch, so observers never
        see a half-renumbered book. On failure the local view reverts to the
        last confirmed order and :class:`ReorderError` is raised (permission
        and not-found failures keep their own type). There is no retry.
        """
        current = self.chapters
        size = len(current)
        if not (0 <= from_index < size and 0 <= to_index < size):
            raise InvalidMoveError(
                f"Cannot move chapter {from_index} to {to_index} in a book of {size} chapters."
            )
        if from_index == to_index:
            return current

        reordered = []
        operations = []
        for position, chapter in enumerate(move_item(current, from_index, to_index)):
            renumbered = model_copy_compat(chapter)
            renumbered.order = position + 1
            reordered.append(renumbered)
            if chapter.order != renumbered.order:
                operations.append((BatchOperation.UPDATE, renumbered, {"order"}))

        if len(operations) > MAX_BATCH_OPERATIONS:
            raise BatchTooLargeError(
                f"Reordering book {self.book.id} renumbers {len(operations)} chapters; "
                f"one batch holds at most {MAX_BATCH_OPERATIONS}."
            )

        self.pending = reordered
        self._reorders_in_flight += 1
        try:
            with store_errors("reorder chapters", wrap=ReorderError):
                await Chapter.batch_write(operations)
        except StoreError as exc:
            self.pending = None
            logger.warning(f"Reorder of book {self.book.id} reverted: {exc}")
            raise
        finally:
            self._reorders_in_flight -= 1

        self.confirmed = reordered
        if self.pending is reordered:
            self.pending = None
        logger.info(f"Book {self.book.id}: {len(operations)} chapters renumbered")
        return self.chapters

    async def delete_chapter(self, chapter_id: str) -> Optional[Chapter]:
        """
        Delete one chapter. Returns the chapter that is active afterwards.
        The last chapter of a book cannot be deleted.
        """
        chapter = self.find(chapter_id)
        if chapter is None:
            raise DocumentNotFoundError(f"Chapter {chapter_id} is not part of this book.")
        if len(self.chapters) <= 1:
            raise MinimumChapterCountError()

        with store_errors("delete chapter"):
            await chapter.delete(parent=self.book)

        self.confirmed = [c for c in self.confirmed if c.id != chapter_id]
        if self.pending is not None:
            self.pending = [c for c in self.pending if c.id != chapter_id]
        if self.active_chapter_id == chapter_id:
            self.active_chapter_id = None
        self._select_fallback()
        logger.info(f"Chapter {chapter_id} deleted from book {self.book.id}")
        return self.active_chapter

    # ------------------------------------------------------------------ #
    # Remote reconciliation                                              #
    # ------------------------------------------------------------------ #

    def apply_remote_snapshot(self, chapters: List[Chapter]) -> None:
        """Replace the confirmed view with the store's chapter list."""
        self.confirmed = sort_chapters(chapters)
        if not self._reorders_in_flight:
            self.pending = None
        self._select_fallback()
