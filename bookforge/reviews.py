import logging
from typing import List, Optional

from .auth import AuthContext
from .enums import OrderByDirection
from .errors import (
    DocumentNotFoundError,
    InvalidRatingError,
    PermissionDeniedError,
    SelfReviewError,
    ValidationError,
    store_errors,
)
from .models import Book, Review

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


async def submit_review(auth: AuthContext, book: Book, rating: int, text: str) -> Review:
    # bool is an int subclass; True would be stored as 1.
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise InvalidRatingError(f"Rating must be a whole number, got {rating!r}.")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise InvalidRatingError(f"Rating must be between {MIN_RATING} and {MAX_RATING}.")
    if not (text or "").strip():
        raise ValidationError("Rating and text required.")
    if auth.uid == book.author_id:
        raise SelfReviewError("Authors cannot review their own book.")

    review = Review(author_id=auth.uid, rating=rating, text=text.strip())
    with store_errors("submit review"):
        await review.save(parent=book)
    logger.info(f"Review {review.id} submitted on book {book.id}")
    return review


async def delete_review(auth: AuthContext, book: Book, review_id: str) -> None:
    with store_errors("load review"):
        review = await Review.get(review_id, parent=book)
    if review is None:
        raise DocumentNotFoundError(f"Review {review_id} does not exist.")
    if review.author_id != auth.uid:
        raise PermissionDeniedError("Only the reviewer can delete a review.")
    with store_errors("delete review"):
        await review.delete()


async def list_reviews(book: Book) -> List[Review]:
    """Reviews of ``book``, newest first."""
    with store_errors("list reviews"):
        return await book.subcollection(Review).find_all(
            order_by=(Review.created_at, OrderByDirection.DESCENDING)
        )


def average_rating(reviews: List[Review]) -> Optional[float]:
    if not reviews:
        return None
    return round(sum(r.rating for r in reviews) / len(reviews), 1)
