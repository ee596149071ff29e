"""Creating books and listing them."""

import logging
from typing import List, Optional

from .auth import AuthContext
from .enums import BatchOperation, BookStatus, OrderByDirection
from .errors import EmailNotVerifiedError, TitleRequiredError, store_errors
from .models import ANONYMOUS, FIRST_CHAPTER_CONTENT, FIRST_CHAPTER_TITLE, Book, Chapter

logger = logging.getLogger(__name__)


async def create_book(auth: AuthContext, title: str, description: str = "") -> Book:
    """
    Create a draft book owned by ``auth`` together with its first chapter,
    in one batch, so a stored book never has zero chapters.
    """
    if not auth.email_verified:
        raise EmailNotVerifiedError()
    title = (title or "").strip()
    if not title:
        raise TitleRequiredError()

    with store_errors("create book"):
        book = Book(
            id=Book.new_id(),
            title=title,
            description=description,
            author_id=auth.uid,
            author=auth.display_name or ANONYMOUS,
            status=BookStatus.DRAFT.value,
        )
        chapter = Chapter(
            title=FIRST_CHAPTER_TITLE, content=FIRST_CHAPTER_CONTENT, order=1
        ).bind_parent(book)
        await Book.batch_write([
            (BatchOperation.CREATE, book),
            (BatchOperation.CREATE, chapter),
        ])
    logger.info(f"Book {book.id} created by {auth.uid}")
    return book


async def list_author_books(author_id: str, include_drafts: bool = True) -> List[Book]:
    """Books of one author, most recently updated first."""
    filters = [Book.author_id == author_id]
    if not include_drafts:
        filters.append(Book.status == BookStatus.PUBLISHED.value)
    with store_errors("list author books"):
        return await Book.find_all(
            filters=filters, order_by=(Book.updated_at, OrderByDirection.DESCENDING)
        )


async def list_published_books(limit: Optional[int] = None) -> List[Book]:
    with store_errors("list published books"):
        return await Book.find_all(
            filters=[Book.status == BookStatus.PUBLISHED.value],
            order_by=(Book.updated_at, OrderByDirection.DESCENDING),
            limit=limit,
        )
