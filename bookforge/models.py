"""Document models of the reading/writing platform."""

from datetime import datetime
from typing import List, Optional

from .enums import BookStatus
from .firestore_model import BaseFirestoreModel
from .pydantic_compat import Field

ANONYMOUS = "Anonymous"
DEFAULT_BOOK_TITLE = "Untitled Book"
FIRST_CHAPTER_TITLE = "Chapter 1"
FIRST_CHAPTER_CONTENT = "<p>Start your story here...</p>"
NEW_CHAPTER_CONTENT = "<p>Start writing...</p>"


class UserProfile(BaseFirestoreModel):
    class Settings:
        name = "users"

    display_name: str = Field(default=ANONYMOUS, alias="displayName")
    photo_url: str = Field(default="", alias="photoURL")
    reading_list: List[str] = Field(default_factory=list, alias="readingList")
    followers: List[str] = Field(default_factory=list)
    following: List[str] = Field(default_factory=list)


class Book(BaseFirestoreModel):
    """
    Top-level authored work. Chapters and reviews live in sub-collections
    (``books/{id}/chapters``, ``books/{id}/reviews``) and share its lifetime.
    ``author_id`` is set once at creation and never sent in an update.
    """

    class Settings:
        name = "books"
        create_timestamps = ("createdAt", "updatedAt")
        update_timestamps = ("updatedAt",)

    title: str = DEFAULT_BOOK_TITLE
    author_id: str = Field(alias="authorId")
    author: str = ""
    status: BookStatus = BookStatus.DRAFT
    cover_image: str = Field(default="", alias="coverImage")
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @property
    def is_published(self) -> bool:
        return self.status == BookStatus.PUBLISHED


class Chapter(BaseFirestoreModel):
    class Settings:
        name = "chapters"
        parent = Book
        create_timestamps = ("createdAt",)

    title: str = ""
    content: str = ""
    # Position in the book; unique per book, gaps allowed. Older chapters may
    # not carry one and are ordered by creation time instead.
    order: Optional[int] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


class Review(BaseFirestoreModel):
    class Settings:
        name = "reviews"
        parent = Book
        create_timestamps = ("createdAt",)

    author_id: str = Field(alias="authorId")
    rating: int = Field(ge=1, le=5)
    text: str = ""
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


ALL_MODELS = [UserProfile, Book, Chapter, Review]
