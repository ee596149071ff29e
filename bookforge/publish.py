import logging

from .draft_sync import DraftSyncEngine
from .enums import BookStatus
from .errors import EmptyBookError, MissingCoverImageError, PublishError, store_errors
from .pydantic_compat import BaseModel

logger = logging.getLogger(__name__)


class PublishResult(BaseModel):
    book_id: str
    republished: bool = False

    @property
    def message(self) -> str:
        return "Changes Published!" if self.republished else "Book Published!"


class PublishGate:
    """
    Moves a book from draft to published, or re-asserts published.

    The cover check runs before anything is written. The draft is then saved
    (bypassing the manual-save toggle) and only after that save succeeds is
    the status written, as a separate update.
    """

    def __init__(self, drafts: DraftSyncEngine):
        self.drafts = drafts

    def check(self) -> None:
        book = self.drafts.book
        if not book.cover_image:
            raise MissingCoverImageError()
        if self.drafts.chapter is None:
            raise EmptyBookError()

    async def publish(self) -> PublishResult:
        self.check()
        await self.drafts.flush(force=True)

        book = self.drafts.book
        republished = book.status == BookStatus.PUBLISHED
        previous = book.status
        book.status = BookStatus.PUBLISHED.value
        try:
            with store_errors("publish book", wrap=PublishError):
                await book.update(include={"status"})
        except Exception:
            book.status = previous
            raise

        logger.info(f"Book {book.id} {'republished' if republished else 'published'}")
        return PublishResult(book_id=book.id, republished=republished)
