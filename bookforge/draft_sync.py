"""
Autosave / manual-save state machine of one editing session.

::

    CLEAN --edit--> DIRTY --quiet for `delay`--> SAVING --ok--> CLEAN
                      ^                            |
                      |                            +--error--> SAVE_FAILED
                      +------------edit----------------------------+

Edits made while a save is in flight are remembered and, once that save
resolves, put the engine back in DIRTY with a fresh debounce.
"""

import asyncio
import logging
from typing import Callable, Optional

from .clock import Clock, DebounceTimer, LoopClock
from .config import DEFAULT_AUTOSAVE_DELAY
from .enums import SaveState
from .errors import (
    DraftSaveError,
    EmptyBookError,
    ManualSaveDisabledError,
    StoreError,
    is_store_exception,
    translate_store_error,
)
from .models import Book, Chapter
from .pydantic_compat import model_copy_compat

logger = logging.getLogger(__name__)

BOOK_DRAFT_FIELDS = {"title", "cover_image"}
CHAPTER_DRAFT_FIELDS = {"title", "content"}


class DraftSyncEngine:
    def __init__(
        self,
        book: Book,
        chapter: Optional[Chapter] = None,
        clock: Optional[Clock] = None,
        delay: float = DEFAULT_AUTOSAVE_DELAY,
        autosave: bool = True,
        on_saved: Optional[Callable[["DraftSyncEngine"], None]] = None,
        on_failed: Optional[Callable[[StoreError], None]] = None,
    ):
        # Working copies hold local edits; confirmed copies mirror the store.
        self.book: Book = model_copy_compat(book)
        self.chapter: Optional[Chapter] = model_copy_compat(chapter) if chapter is not None else None
        self.confirmed_book: Book = book
        self.confirmed_chapter: Optional[Chapter] = chapter

        self.state = SaveState.CLEAN
        self.autosave = autosave
        self.last_error: Optional[StoreError] = None
        self.saves_issued = 0
        self.on_saved = on_saved
        self.on_failed = on_failed

        self._timer = DebounceTimer(clock or LoopClock(), delay, self._on_quiet)
        self._inflight: Optional[asyncio.Task] = None
        self._edited_during_save = False
        self._closed = False

    # ------------------------------------------------------------------ #
    # State                                                              #
    # ------------------------------------------------------------------ #

    @property
    def saving(self) -> bool:
        return self._inflight is not None

    @property
    def has_unsaved_edits(self) -> bool:
        return self.state in (SaveState.DIRTY, SaveState.SAVE_FAILED) or self._edited_during_save

    @property
    def timer_pending(self) -> bool:
        return self._timer.pending

    def set_autosave(self, enabled: bool) -> None:
        self.autosave = enabled
        if not enabled:
            self._timer.cancel()
        elif self.state is SaveState.DIRTY and not self.saving:
            self._timer.arm()

    # ------------------------------------------------------------------ #
    # Edits                                                              #
    # ------------------------------------------------------------------ #

    def edit_book_title(self, title: str) -> None:
        self.book.title = title
        self._touch()

    def edit_cover_image(self, url: str) -> None:
        self.book.cover_image = url or ""
        self._touch()

    def edit_chapter_title(self, title: str) -> None:
        self._require_chapter().title = title
        self._touch()

    def edit_chapter_content(self, content: str) -> None:
        self._require_chapter().content = content
        self._touch()

    def _require_chapter(self) -> Chapter:
        if self.chapter is None:
            raise EmptyBookError()
        return self.chapter

    def _touch(self) -> None:
        if self.saving:
            self._edited_during_save = True
            return
        self.state = SaveState.DIRTY
        if self.autosave and not self._closed:
            self._timer.arm()

    # ------------------------------------------------------------------ #
    # Saving                                                             #
    # ------------------------------------------------------------------ #

    def _on_quiet(self) -> None:
        if self._closed or self.state is not SaveState.DIRTY:
            return
        if self.saving:
            self._edited_during_save = True
            return
        self._start_save()

    def _start_save(self) -> asyncio.Task:
        task = asyncio.ensure_future(self._save())
        self._inflight = task
        task.add_done_callback(self._retrieve)
        return task

    @staticmethod
    def _retrieve(task: asyncio.Task) -> None:
        # Failures are reported through last_error/on_failed; mark them seen.
        if not task.cancelled():
            task.exception()

    async def wait_idle(self) -> None:
        """Wait until no save is in flight."""
        while self._inflight is not None:
            task = self._inflight
            await asyncio.wait({task})
            if self._inflight is task:
                self._inflight = None

    async def save(self) -> None:
        """Manual save. Disabled while autosave is on."""
        if self.autosave:
            raise ManualSaveDisabledError()
        await self.flush(force=True)

    async def flush(self, force: bool = False) -> bool:
        """
        Save now, bypassing the debounce. Waits for an in-flight save first.
        Without ``force`` nothing is written when there are no edits.
        Returns whether a save was issued; raises :class:`DraftSaveError`.
        """
        self._timer.cancel()
        await self.wait_idle()
        if not force and not self.has_unsaved_edits:
            return False
        self._timer.cancel()
        await self._start_save()
        return True

    async def _save(self) -> None:
        book = model_copy_compat(self.book)
        chapter = model_copy_compat(self.chapter) if self.chapter is not None else None
        self.state = SaveState.SAVING
        self._edited_during_save = False
        self.saves_issued += 1
        logger.debug(f"Saving draft of book {book.id} (save #{self.saves_issued})")

        writes = [book.update(include=BOOK_DRAFT_FIELDS)]
        if chapter is not None:
            writes.insert(0, chapter.update(include=CHAPTER_DRAFT_FIELDS, touch=False))

        error: Optional[BaseException] = None
        try:
            results = await asyncio.gather(*writes, return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException) and not is_store_exception(result):
                    raise result

            book_result = results[-1]
            chapter_result = results[0] if chapter is not None else None
            book_error = (
                translate_store_error(book_result, "save book")
                if isinstance(book_result, BaseException) else None
            )
            chapter_error = (
                translate_store_error(chapter_result, "save chapter")
                if isinstance(chapter_result, BaseException) else None
            )

            if book_error or chapter_error:
                error = DraftSaveError(
                    chapter_error=chapter_error,
                    book_error=book_error,
                    chapter_written=chapter is not None and chapter_error is None,
                    book_written=book_error is None,
                )
                self._failed(error)
            else:
                self.state = SaveState.CLEAN
                self.last_error = None
                self.confirmed_book = book
                if chapter is not None:
                    self.confirmed_chapter = chapter
                logger.info(f"Draft of book {book.id} saved")
                if self.on_saved is not None:
                    self.on_saved(self)
        except BaseException:
            if error is None:
                self.state = SaveState.SAVE_FAILED
            raise
        finally:
            if self._inflight is asyncio.current_task():
                self._inflight = None
            if self._edited_during_save:
                self._edited_during_save = False
                self.state = SaveState.DIRTY
                if self.autosave and not self._closed:
                    self._timer.arm()

        if error is not None:
            raise error

    def _failed(self, error: DraftSaveError) -> None:
        self.state = SaveState.SAVE_FAILED
        self.last_error = error
        logger.warning(f"Draft save failed (partial={error.partial}): {error}")
        if self.on_failed is not None:
            self.on_failed(error)

    # ------------------------------------------------------------------ #
    # Remote reconciliation                                              #
    # ------------------------------------------------------------------ #

    def apply_remote_book(self, book: Book) -> None:
        """Store snapshot of the book. Replaces the working copy only when clean."""
        self.confirmed_book = book
        if self.state is SaveState.CLEAN:
            self.book = model_copy_compat(book)

    def apply_remote_chapter(self, chapter: Chapter) -> None:
        if self.chapter is None or chapter.id != self.chapter.id:
            return
        self.confirmed_chapter = chapter
        if self.state is SaveState.CLEAN:
            self.chapter = model_copy_compat(chapter)

    def bind_chapter(self, chapter: Optional[Chapter]) -> None:
        """Make ``chapter`` the one being edited."""
        self.confirmed_chapter = chapter
        self.chapter = model_copy_compat(chapter) if chapter is not None else None

    def teardown(self) -> None:
        """Drop the pending debounce. An in-flight write is left to finish."""
        self._closed = True
        self._timer.cancel()

    def resume(self) -> None:
        """Undo :meth:`teardown`; unsaved edits get a fresh debounce."""
        self._closed = False
        if self.autosave and self.state is SaveState.DIRTY and not self.saving:
            self._timer.arm()
