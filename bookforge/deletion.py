import logging
from typing import Dict, List, Tuple

from .enums import BatchOperation
from .errors import BatchTooLargeError, CascadeDeleteError, store_errors
from .firestore_model import MAX_BATCH_OPERATIONS, BaseFirestoreModel
from .models import Book
from .pydantic_compat import BaseModel

logger = logging.getLogger(__name__)


class DeletionReport(BaseModel):
    book_id: str
    # collection name -> documents removed ("chapters", "reviews")
    children: Dict[str, int] = {}

    @property
    def chapters(self) -> int:
        return self.children.get("chapters", 0)

    @property
    def reviews(self) -> int:
        return self.children.get("reviews", 0)

    @property
    def total(self) -> int:
        return sum(self.children.values()) + 1


class DeletionOrchestrator:
    """
    Deletes a book together with every document in its sub-collections, in
    one atomic batch: readers see either the whole book or nothing of it.
    """

    async def collect(self, book: Book) -> List[Tuple[BatchOperation, BaseFirestoreModel]]:
        operations = []
        for child_cls in Book._get_child_models():
            async for child in book.subcollection(child_cls).find():
                operations.append((BatchOperation.DELETE, child))
        operations.append((BatchOperation.DELETE, book))
        return operations

    async def delete_book(self, book: Book) -> DeletionReport:
        with store_errors("list book contents", wrap=CascadeDeleteError):
            operations = await self.collect(book)

        if len(operations) > MAX_BATCH_OPERATIONS:
            raise BatchTooLargeError(
                f"Book {book.id} has {len(operations) - 1} documents; "
                f"one batch can delete at most {MAX_BATCH_OPERATIONS - 1} plus the book."
            )

        with store_errors("delete book", wrap=CascadeDeleteError):
            await Book.batch_write(operations)

        report = DeletionReport(book_id=book.id)
        for _, doc in operations[:-1]:
            name = doc.get_collection_name()
            report.children[name] = report.children.get(name, 0) + 1
        logger.info(f"Book {book.id} deleted with {report.total - 1} child documents")
        return report
