"""
Bound query helper: ``book.subcollection(Chapter).find()`` is sugar over
``Chapter.find(parent=book)``.
"""

from typing import TYPE_CHECKING, AsyncGenerator, List, Optional, Type

if TYPE_CHECKING:
    from .firestore_model import BaseFirestoreModel


class SubCollectionAccessor:
    """
    Queries one sub-collection under a specific parent document.

    Example:
        chapters = book.subcollection(Chapter)
        async for chapter in chapters.find(order_by=Chapter.order):
            print(chapter.title)
    """

    def __init__(self, parent: "BaseFirestoreModel", child_cls: Type["BaseFirestoreModel"]):
        self._parent = parent
        self._child_cls = child_cls

        if child_cls._get_parent_model() is not type(parent):
            raise ValueError(
                f"{child_cls.__name__} does not declare "
                f"Settings.parent = {type(parent).__name__}"
            )

    @property
    def path(self) -> str:
        return self._child_cls._get_collection_path(parent=self._parent)

    async def add(self, doc: "BaseFirestoreModel", **kwargs) -> "BaseFirestoreModel":
        return await doc.save(parent=self._parent, **kwargs)

    async def get(self, doc_id: str) -> Optional["BaseFirestoreModel"]:
        return await self._child_cls.get(doc_id, parent=self._parent)

    async def find(self, filters=None, **kwargs) -> AsyncGenerator:
        async for doc in self._child_cls.find(filters=filters, parent=self._parent, **kwargs):
            yield doc

    async def find_all(self, filters=None, **kwargs) -> List["BaseFirestoreModel"]:
        return [doc async for doc in self.find(filters=filters, **kwargs)]

    async def find_one(self, filters=None, **kwargs):
        return await self._child_cls.find_one(filters=filters or [], parent=self._parent, **kwargs)

    async def count(self, filters=None) -> int:
        return await self._child_cls.count(filters=filters or [], parent=self._parent)

    async def exists(self, doc_id: str) -> bool:
        return await self._child_cls.exists(doc_id, parent=self._parent)

    async def delete(self, doc: "BaseFirestoreModel") -> None:
        await doc.delete(parent=self._parent)
