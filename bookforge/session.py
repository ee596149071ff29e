"""
One open book-editing session.

:class:`EditorSession` wires the chapter ordering engine, the draft engine,
the publish gate and the deletion orchestrator to a book, an explicit
:class:`~bookforge.auth.AuthContext`, and (optionally) real-time listeners.
Every public operation returns an :class:`Outcome` and emits a
:class:`Notice`; bookforge errors never escape to the caller.
"""

import logging
from typing import Any, Callable, List, Optional

from .auth import AuthContext
from .chapter_ordering import ChapterOrderingEngine
from .clock import Clock
from .config import BookforgeSettings
from .deletion import DeletionOrchestrator
from .draft_sync import DraftSyncEngine
from .enums import NoticeLevel, OutcomeStatus, SaveState
from .errors import (
    BookforgeError,
    DocumentNotFoundError,
    DraftSaveError,
    PermissionDeniedError,
    StoreError,
    ValidationError,
    store_errors,
)
from .models import FIRST_CHAPTER_CONTENT, FIRST_CHAPTER_TITLE, Book, Chapter
from .publish import PublishGate
from .pydantic_compat import BaseModel
from .realtime import Subscription, listen_document, listen_query

logger = logging.getLogger(__name__)


class Notice(BaseModel):
    level: NoticeLevel = NoticeLevel.INFO
    title: str
    description: str = ""


class Outcome(BaseModel):
    status: OutcomeStatus
    message: str = ""
    value: Any = None
    error: Any = None

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS


def _log_notice(notice: Notice) -> None:
    log = logger.error if notice.level == NoticeLevel.ERROR else logger.info
    log(f"{notice.title}: {notice.description}")


class EditorSession:
    def __init__(
        self,
        auth: AuthContext,
        book_id: str,
        settings: Optional[BookforgeSettings] = None,
        clock: Optional[Clock] = None,
        notify: Optional[Callable[[Notice], None]] = None,
    ):
        self.auth = auth
        self.book_id = book_id
        self.settings = settings or BookforgeSettings()
        self.clock = clock
        self.notify = notify or _log_notice

        self.book: Optional[Book] = None
        self.ordering: Optional[ChapterOrderingEngine] = None
        self.drafts: Optional[DraftSyncEngine] = None
        self.publisher: Optional[PublishGate] = None
        self.deleter = DeletionOrchestrator()

        self.fatal_error: Optional[StoreError] = None
        self.closed = False
        self._subscriptions: List[Subscription] = []

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #

    @property
    def is_open(self) -> bool:
        return self.drafts is not None and not self.closed and self.fatal_error is None

    async def open(self, listen: bool = False) -> Outcome:
        try:
            with store_errors("load book"):
                book = await Book.get(self.book_id)
            if book is None:
                raise DocumentNotFoundError(f"Book {self.book_id} does not exist.")
            if book.author_id != self.auth.uid:
                raise PermissionDeniedError("You don't have permission to edit this book.")

            self.book = book
            self.ordering = ChapterOrderingEngine(book)
            await self.ordering.load()
            if not self.ordering.chapters:
                await self.ordering.add_chapter(FIRST_CHAPTER_TITLE, FIRST_CHAPTER_CONTENT)
        except StoreError as exc:
            return self._fatal(exc)

        self.drafts = DraftSyncEngine(
            book,
            self.ordering.active_chapter,
            clock=self.clock,
            delay=self.settings.autosave_delay,
            autosave=self.settings.autosave,
            on_saved=self._on_saved,
            on_failed=self._on_save_failed,
        )
        self.publisher = PublishGate(self.drafts)
        if listen:
            self._subscribe()
        logger.info(f"Editor session opened on book {book.id} for {self.auth.uid}")
        return Outcome(status=OutcomeStatus.SUCCESS, value=book)

    def close(self) -> None:
        """Stop listening and drop the debounce; an in-flight save may still land."""
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        if self.drafts is not None:
            self.drafts.teardown()
        self.closed = True

    def _subscribe(self) -> None:
        self._subscriptions.append(listen_document(Book, self.book.id, self.on_remote_book))
        self._subscriptions.append(
            listen_query(Chapter, self.on_remote_chapters, parent=self.book)
        )

    # ------------------------------------------------------------------ #
    # Outcomes and notices                                               #
    # ------------------------------------------------------------------ #

    def _success(self, title: str, value: Any = None, description: str = "") -> Outcome:
        self.notify(Notice(title=title, description=description))
        return Outcome(status=OutcomeStatus.SUCCESS, message=title, value=value)

    def _failure(self, error: BookforgeError) -> Outcome:
        if isinstance(error, PermissionDeniedError):
            return self._fatal(error)
        if isinstance(error, StoreError):
            status = OutcomeStatus.FAILED
        else:
            status = OutcomeStatus.REJECTED
        self.notify(Notice(level=NoticeLevel.ERROR, title=error.title, description=str(error)))
        return Outcome(status=status, message=str(error), error=error)

    def _fatal(self, error: StoreError) -> Outcome:
        self.fatal_error = error
        self.close()
        self.notify(Notice(level=NoticeLevel.ERROR, title=error.title, description=str(error)))
        logger.error(f"Editor session on book {self.book_id} stopped: {error}")
        return Outcome(status=OutcomeStatus.FAILED, message=str(error), error=error)

    def _on_saved(self, drafts: DraftSyncEngine) -> None:
        self.book = drafts.confirmed_book

    def _on_save_failed(self, error: StoreError) -> None:
        # Autosave failures have no caller to return an outcome to.
        self.notify(Notice(level=NoticeLevel.ERROR, title=error.title, description=str(error)))

    async def _run(self, action, success_title) -> Outcome:
        if not self.is_open:
            error = self.fatal_error or ValidationError("The editor session is not open.")
            return Outcome(status=OutcomeStatus.FAILED, message=str(error), error=error)
        try:
            value = await action()
        except DraftSaveError as exc:
            # Already reported through on_failed.
            status = OutcomeStatus.PARTIAL if exc.partial else OutcomeStatus.FAILED
            if isinstance(exc.chapter_error, PermissionDeniedError) or isinstance(
                exc.book_error, PermissionDeniedError
            ):
                return self._fatal(exc)
            return Outcome(status=status, message=str(exc), error=exc)
        except BookforgeError as exc:
            return self._failure(exc)
        title = success_title(value) if callable(success_title) else success_title
        return self._success(title, value)

    # ------------------------------------------------------------------ #
    # Edits                                                              #
    # ------------------------------------------------------------------ #

    @property
    def save_state(self) -> SaveState:
        return self.drafts.state

    def _editable(self) -> bool:
        if not self.is_open:
            logger.warning(f"Edit ignored: editor session on book {self.book_id} is not open")
            return False
        return True

    def edit_book_title(self, title: str) -> None:
        if self._editable():
            self.drafts.edit_book_title(title)

    def edit_cover_image(self, url: str) -> None:
        if self._editable():
            self.drafts.edit_cover_image(url)
            self.notify(Notice(title="Cover Image Updated!"))

    def edit_chapter_title(self, title: str) -> None:
        if self._editable():
            self.drafts.edit_chapter_title(title)

    def edit_chapter_content(self, content: str) -> None:
        if self._editable():
            self.drafts.edit_chapter_content(content)

    def set_autosave(self, enabled: bool) -> None:
        if self._editable():
            self.drafts.set_autosave(enabled)

    # ------------------------------------------------------------------ #
    # Operations                                                         #
    # ------------------------------------------------------------------ #

    async def save(self) -> Outcome:
        return await self._run(self.drafts.save, "Saved!")

    async def publish(self) -> Outcome:
        async def action():
            result = await self.publisher.publish()
            self.book = self.drafts.book
            return result

        return await self._run(action, lambda result: result.message)

    async def add_chapter(self, title: Optional[str] = None) -> Outcome:
        return await self._run(lambda: self.ordering.add_chapter(title), "Chapter added")

    async def move_chapter(self, from_index: int, to_index: int) -> Outcome:
        return await self._run(
            lambda: self.ordering.move(from_index, to_index), "Chapters reordered"
        )

    async def select_chapter(self, chapter_id: str) -> Outcome:
        async def action():
            if self.ordering.find(chapter_id) is None:
                raise DocumentNotFoundError(f"Chapter {chapter_id} is not part of this book.")
            if chapter_id != self.ordering.active_chapter_id:
                # Pending edits belong to the chapter being left.
                await self.drafts.flush()
                self.drafts.bind_chapter(self.ordering.select(chapter_id))
            return self.ordering.active_chapter

        return await self._run(action, lambda chapter: f"Editing {chapter.title}")

    async def delete_chapter(self, chapter_id: str) -> Outcome:
        async def action():
            was_active = self.ordering.active_chapter_id == chapter_id
            active = await self.ordering.delete_chapter(chapter_id)
            if was_active:
                self.drafts.bind_chapter(active)
            return active

        return await self._run(action, "Chapter deleted")

    async def delete_book(self) -> Outcome:
        async def action():
            # No autosave may land on documents that are about to disappear.
            self.drafts.teardown()
            await self.drafts.wait_idle()
            try:
                report = await self.deleter.delete_book(self.book)
            except BookforgeError:
                self.drafts.resume()
                raise
            self.close()
            return report

        return await self._run(action, "Book Deleted")

    # ------------------------------------------------------------------ #
    # Remote events                                                      #
    # ------------------------------------------------------------------ #

    def on_remote_book(self, book: Optional[Book]) -> None:
        if self.closed:
            return
        if book is None:
            logger.info(f"Book {self.book_id} was deleted elsewhere")
            self.close()
            self.notify(Notice(level=NoticeLevel.ERROR, title="Book Deleted",
                               description="This book no longer exists."))
            return
        if book.author_id != self.auth.uid:
            self._fatal(PermissionDeniedError("You don't have permission to edit this book."))
            return
        self.book = book
        self.drafts.apply_remote_book(book)

    def on_remote_chapters(self, chapters: List[Chapter]) -> None:
        if self.closed:
            return
        previous_id = self.ordering.active_chapter_id
        self.ordering.apply_remote_snapshot(chapters)
        active = self.ordering.active_chapter
        if active is None or active.id != previous_id:
            self.drafts.bind_chapter(active)
        else:
            self.drafts.apply_remote_chapter(active)
