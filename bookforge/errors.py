"""
Exception hierarchy for bookforge.

Every engine method raises one of these. Errors coming from the Firestore
SDK (``google.api_core.exceptions``) are translated with
:func:`translate_store_error` / :func:`store_errors` at the engine boundary,
so callers only have to handle :class:`BookforgeError`.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from google.api_core import exceptions as gexc

logger = logging.getLogger(__name__)


class BookforgeError(Exception):
    """Base class for every error raised by bookforge."""

    #: Short, user-facing title for notices.
    title = "Something went wrong"


# --------------------------------------------------------------------------- #
# Validation: rejected before any write                                       #
# --------------------------------------------------------------------------- #


class ValidationError(BookforgeError):
    title = "Invalid request"


class MissingCoverImageError(ValidationError):
    title = "Missing Cover Image"

    def __init__(self, message: str = "Please upload a cover image before publishing."):
        super().__init__(message)


class EmptyBookError(ValidationError):
    title = "Nothing to publish"

    def __init__(self, message: str = "The book has no chapter open for editing."):
        super().__init__(message)


class SynopsisTooShortError(ValidationError):
    title = "Synopsis too short"


class InvalidRatingError(ValidationError):
    title = "Invalid rating"


class InvalidMoveError(ValidationError):
    title = "Invalid chapter move"


class ManualSaveDisabledError(ValidationError):
    title = "Autosave is on"

    def __init__(self, message: str = "Manual save is disabled while autosave is enabled."):
        super().__init__(message)


class BatchTooLargeError(ValidationError):
    title = "Too many documents"


class TitleRequiredError(ValidationError):
    title = "Title is required"

    def __init__(self, message: str = "Please enter a title for your book."):
        super().__init__(message)


class EmailNotVerifiedError(ValidationError):
    title = "Email Not Verified"

    def __init__(self, message: str = "Please verify your email before creating a book."):
        super().__init__(message)


class SelfReviewError(ValidationError):
    title = "Cannot review own book"


class SelfFollowError(ValidationError):
    title = "Cannot follow yourself"


class DisplayNameTakenError(ValidationError):
    title = "Display Name Taken"

    def __init__(self, display_name: str):
        super().__init__(f'The name "{display_name}" is already in use.')
        self.display_name = display_name


class MinimumChapterCountError(BookforgeError):
    title = "Cannot delete chapter"

    def __init__(self, message: str = "A book must keep at least one chapter."):
        super().__init__(message)


# --------------------------------------------------------------------------- #
# Store failures                                                              #
# --------------------------------------------------------------------------- #


class StoreError(BookforgeError):
    """A Firestore call failed."""

    title = "Store error"
    transient = True

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class TransientStoreError(StoreError):
    title = "Network error"


class PermissionDeniedError(StoreError):
    """Fatal for the current page: there is no retry path."""

    title = "Permission denied"
    transient = False


class DocumentNotFoundError(StoreError):
    title = "Not found"
    transient = False


class DraftSaveError(StoreError):
    """
    A draft save failed on the chapter write, the book write, or both.

    ``partial`` is true when exactly one of the two writes went through.
    The successful write is not rolled back.
    """

    title = "Error Saving"

    def __init__(
        self,
        chapter_error: Optional[StoreError] = None,
        book_error: Optional[StoreError] = None,
        chapter_written: bool = False,
        book_written: bool = False,
    ):
        failed = [
            name
            for name, err in (("chapter", chapter_error), ("book", book_error))
            if err is not None
        ]
        cause = chapter_error or book_error
        super().__init__(f"Could not save {' and '.join(failed)}: {cause}", cause=cause)
        self.chapter_error = chapter_error
        self.book_error = book_error
        self.chapter_written = chapter_written
        self.book_written = book_written
        self.transient = all(e.transient for e in (chapter_error, book_error) if e is not None)

    @property
    def partial(self) -> bool:
        return self.chapter_written or self.book_written


class ReorderError(StoreError):
    title = "Could not reorder chapters"


class PublishError(StoreError):
    title = "Error Publishing"


class CascadeDeleteError(StoreError):
    title = "Error Deleting Book"


class SuggestionServiceError(BookforgeError):
    title = "Suggestion service error"


# --------------------------------------------------------------------------- #
# Translation                                                                 #
# --------------------------------------------------------------------------- #

_PERMISSION_ERRORS = (gexc.PermissionDenied, gexc.Forbidden, gexc.Unauthenticated, gexc.Unauthorized)


def is_store_exception(exc: BaseException) -> bool:
    return isinstance(exc, (StoreError, gexc.GoogleAPIError))


def translate_store_error(exc: BaseException, action: str = "store call") -> StoreError:
    """Map a Firestore SDK exception onto the bookforge hierarchy."""
    if isinstance(exc, StoreError):
        return exc
    if isinstance(exc, _PERMISSION_ERRORS):
        return PermissionDeniedError(f"{action}: permission denied", cause=exc)
    if isinstance(exc, gexc.NotFound):
        return DocumentNotFoundError(f"{action}: document not found", cause=exc)
    return TransientStoreError(f"{action} failed: {exc}", cause=exc)


@contextmanager
def store_errors(action: str, wrap: type = None) -> Iterator[None]:
    """
    Translate SDK exceptions raised inside the block.

    With ``wrap`` (a :class:`StoreError` subclass), transient failures are
    re-raised as that type; permission and not-found errors keep their own
    type so callers can tell fatal failures apart.
    """
    try:
        yield
    except BookforgeError:
        raise
    except gexc.GoogleAPIError as exc:
        error = translate_store_error(exc, action)
        logger.warning(f"{action} failed: {exc!r}")
        if wrap is not None and isinstance(error, TransientStoreError):
            wrapped = wrap(str(error), cause=exc)
            raise wrapped from exc
        raise error from exc
