import logging
from typing import (
    Any,
    AsyncGenerator,
    ClassVar,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
    Type,
    Union,
)

from google.cloud.firestore_v1 import SERVER_TIMESTAMP, AsyncClient
from google.cloud.firestore_v1.base_query import FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath

from .enums import BatchOperation, FirestoreOperators, OrderByDirection
from .firestore_client import FirestoreDB
from .firestore_fields import FirestoreField
from .pydantic_compat import (
    MODEL_CONFIG,
    BaseModel,
    Field,
    PrivateAttr,
    PydanticVersion,
    get_model_fields,
    model_dump_compat,
)

# Alias for the first element in order-by tuple
FieldType = Union[str, FirestoreField]
# Alias for field ordering tuples
FieldOrderType = Tuple[FieldType, OrderByDirection]
OrderByType = Union[List[Union[FieldType, FieldOrderType]], FieldType, FieldOrderType]
FilterType = Tuple[FieldType, Union[FirestoreOperators, str], Any]

# (op, model) or (op, model, payload). The payload is either a set of python
# field names to include, or a dict of raw Firestore values for UPDATE.
BatchOp = Union[
    Tuple[BatchOperation, "BaseFirestoreModel"],
    Tuple[BatchOperation, "BaseFirestoreModel", Union[Set[str], Dict[str, Any]]],
]

# Hard limit of writes in one Firestore batch.
MAX_BATCH_OPERATIONS = 500

logger = logging.getLogger(__name__)


class BaseFirestoreModel(BaseModel):
    """
    Base document model with asynchronous Firestore operations.

    Subclasses declare their collection in an inner ``Settings`` class::

        class Chapter(BaseFirestoreModel):
            class Settings:
                name = "chapters"
                parent = Book                    # books/{id}/chapters
                create_timestamps = ("createdAt",)

    ``create_timestamps`` and ``update_timestamps`` list Firestore field names
    that receive ``SERVER_TIMESTAMP`` on :meth:`save` and :meth:`update`.
    """

    id: Optional[str] = Field(default=None)

    # Injected by init_bookforge / initialize_db
    _db: ClassVar[Optional[FirestoreDB]] = None
    _registered_models: ClassVar[List[Type["BaseFirestoreModel"]]] = []

    # "books/{bookId}" for a chapter; None for top-level documents
    _parent_path: Optional[str] = PrivateAttr(default=None)

    class Settings:
        name: str = "BaseCollection"  # Override in subclasses

    if PydanticVersion == 2:
        model_config = MODEL_CONFIG
    else:
        class Config:
            allow_population_by_field_name = True
            use_enum_values = True

    # --------------------------------------------------------------------------
    # Initialization
    # --------------------------------------------------------------------------
    @classmethod
    def initialize_fields(cls) -> None:
        """Expose every field as a :class:`FirestoreField` on the class."""
        for field_name, field_info in get_model_fields(cls).items():
            alias = (
                FieldPath.document_id() if field_name == "id"
                else (field_info.alias or field_name)  # type: ignore[attr-defined]
            )
            setattr(cls, field_name, FirestoreField(alias, field_name))

    @classmethod
    def initialize_db(cls, db: FirestoreDB):
        """Inject the FirestoreDB instance to be used for all operations."""
        cls._db = db
        if cls is not BaseFirestoreModel and cls not in BaseFirestoreModel._registered_models:
            BaseFirestoreModel._registered_models.append(cls)

    @classmethod
    def _client(cls) -> AsyncClient:
        if not cls._db:
            raise RuntimeError("Database must be initialized before using the model.")
        return cls._db.client

    # --------------------------------------------------------------------------
    # Collection and path resolution
    # --------------------------------------------------------------------------
    @classmethod
    def get_collection_name(cls) -> str:
        if hasattr(cls, "Settings") and hasattr(cls.Settings, "name"):
            return cls.Settings.name
        return cls.__name__

    @property
    def collection_name(self) -> str:
        return self.get_collection_name()

    @classmethod
    def _get_parent_model(cls) -> Optional[Type["BaseFirestoreModel"]]:
        return getattr(cls.Settings, "parent", None)

    @classmethod
    def _get_child_models(cls) -> List[Type["BaseFirestoreModel"]]:
        """Registered models whose ``Settings.parent`` is this class."""
        return [
            model for model in BaseFirestoreModel._registered_models
            if model._get_parent_model() is cls
        ]

    @classmethod
    def _resolve_parent_path(
        cls,
        parent: Optional["BaseFirestoreModel"] = None,
        parent_path: Optional[str] = None,
    ) -> Optional[str]:
        parent_cls = cls._get_parent_model()
        if parent_cls is None:
            return None
        if parent is not None:
            if not isinstance(parent, parent_cls):
                raise ValueError(
                    f"{cls.__name__} must be stored under a {parent_cls.__name__}, "
                    f"got {type(parent).__name__}"
                )
            return parent._get_doc_path()
        if parent_path:
            return parent_path
        raise RuntimeError(
            f"{cls.__name__} requires a parent {parent_cls.__name__} document."
        )

    @classmethod
    def _get_collection_path(
        cls,
        parent: Optional["BaseFirestoreModel"] = None,
        parent_path: Optional[str] = None,
    ) -> str:
        resolved = cls._resolve_parent_path(parent, parent_path)
        name = cls.get_collection_name()
        return f"{resolved}/{name}" if resolved else name

    def _get_doc_path(self) -> str:
        if not self.id:
            raise ValueError("Cannot get document path without an ID.")
        return f"{self._get_collection_path(parent_path=self._parent_path)}/{self.id}"

    def bind_parent(self, parent: "BaseFirestoreModel") -> "BaseFirestoreModel":
        """Attach this (sub-collection) document to ``parent``."""
        self._parent_path = self._resolve_parent_path(parent=parent)
        return self

    def _doc_ref(self, parent: Optional["BaseFirestoreModel"] = None):
        if parent is not None:
            self.bind_parent(parent)
        if not self.id:
            raise ValueError("Cannot resolve a document reference without an ID.")
        path = self._get_collection_path(parent_path=self._parent_path)
        return self._client().collection(path).document(self.id)

    @classmethod
    def new_id(cls, parent: Optional["BaseFirestoreModel"] = None) -> str:
        """Reserve a store-generated document id without writing."""
        path = cls._get_collection_path(parent=parent)
        return cls._client().collection(path).document().id

    def subcollection(self, child_cls: Type["BaseFirestoreModel"]):
        from .subcollection_accessor import SubCollectionAccessor

        return SubCollectionAccessor(self, child_cls)

    # --------------------------------------------------------------------------
    # Serialization
    # --------------------------------------------------------------------------
    def to_firestore(
        self,
        include: Optional[Set[str]] = None,
        exclude_none: bool = True,
        exclude_unset: bool = False,
    ) -> Dict[str, Any]:
        """Document body keyed by Firestore field names."""
        return model_dump_compat(
            self,
            exclude={"id"},
            include=include,
            exclude_none=exclude_none,
            exclude_unset=exclude_unset,
            by_alias=True,
        )

    @classmethod
    def _stamp(cls, data: Dict[str, Any], setting: str) -> Dict[str, Any]:
        for name in getattr(cls.Settings, setting, ()):
            data[name] = SERVER_TIMESTAMP
        return data

    @classmethod
    def _from_snapshot(cls, doc, parent_path: Optional[str] = None) -> "BaseFirestoreModel":
        data = doc.to_dict() or {}
        data["id"] = doc.id
        instance = cls(**data)
        instance._parent_path = parent_path
        return instance

    # --------------------------------------------------------------------------
    # CRUD operations: create/update/delete
    # --------------------------------------------------------------------------
    async def save(
        self,
        parent: Optional["BaseFirestoreModel"] = None,
        exclude_none=True,
        exclude_unset=False,
    ) -> "BaseFirestoreModel":
        """Create the document. An explicit ``id`` must not exist yet."""
        client = self._client()
        path = self._get_collection_path(parent=parent, parent_path=self._parent_path)
        self._parent_path = self._resolve_parent_path(parent, self._parent_path)

        data_to_save = self._stamp(
            self.to_firestore(exclude_none=exclude_none, exclude_unset=exclude_unset),
            "create_timestamps",
        )
        collection_ref = client.collection(path)

        if not self.id:
            doc_ref = collection_ref.document()
            self.id = doc_ref.id
        else:
            doc_ref = collection_ref.document(self.id)
            if (await doc_ref.get()).exists:
                raise RuntimeError("Error creating object: provided ID already exists.")

        logger.debug(f"Create: {path}/{self.id}")
        await doc_ref.set(data_to_save)
        return self

    async def update(
        self,
        include: Optional[Set[str]] = None,
        parent: Optional["BaseFirestoreModel"] = None,
        exclude_none=True,
        exclude_unset=False,
        touch: bool = True,
    ) -> "BaseFirestoreModel":
        """
        Update fields on an existing document.

        ``include`` restricts the payload to the given python field names.
        With ``touch`` the model's ``update_timestamps`` are refreshed too.
        """
        doc_ref = self._doc_ref(parent)
        updates = self.to_firestore(
            include=include, exclude_none=exclude_none, exclude_unset=exclude_unset
        )
        if touch:
            self._stamp(updates, "update_timestamps")

        logger.debug(f"Update: {self._get_doc_path()} updates={updates}")
        if updates:
            await doc_ref.update(updates)
        return self

    async def update_fields(self, fields: Dict[str, Any]) -> "BaseFirestoreModel":
        """Raw update with Firestore names (transforms such as ``ArrayUnion``)."""
        doc_ref = self._doc_ref()
        logger.debug(f"Update fields: {self._get_doc_path()} fields={list(fields)}")
        await doc_ref.update(dict(fields))
        return self

    async def delete(self, parent: Optional["BaseFirestoreModel"] = None) -> None:
        """Delete this document only; sub-collections are left alone."""
        doc_ref = self._doc_ref(parent)
        logger.debug(f"Delete: {self._get_doc_path()}")
        await doc_ref.delete()

    # --------------------------------------------------------------------------
    # Reads
    # --------------------------------------------------------------------------
    @classmethod
    async def get(
        cls, doc_id: str, parent: Optional["BaseFirestoreModel"] = None
    ) -> Optional["BaseFirestoreModel"]:
        """Retrieve a document by its ID, or None."""
        parent_path = cls._resolve_parent_path(parent)
        path = cls._get_collection_path(parent_path=parent_path)
        doc_snap = await cls._client().collection(path).document(doc_id).get()
        if doc_snap.exists:
            return cls._from_snapshot(doc_snap, parent_path)
        return None

    @classmethod
    async def exists(cls, doc_id: str, parent: Optional["BaseFirestoreModel"] = None) -> bool:
        path = cls._get_collection_path(parent=parent)
        doc_snap = await cls._client().collection(path).document(doc_id).get()
        return doc_snap.exists

    @classmethod
    async def count(
        cls,
        filters: Optional[List[FilterType]] = None,
        parent: Optional["BaseFirestoreModel"] = None,
    ) -> int:
        """
        Number of documents matching the filters. Falls back to fetching
        an empty projection when the SDK has no aggregation support.
        """
        query = cls._build_query(cls._client(), filters=filters or [], parent=parent)
        try:
            count_snapshot = await query.count().get()
            return count_snapshot[0][0].value
        except AttributeError:
            logger.warning("Firestore: Performing count by fetching all items with empty select")
            docs = await query.select([]).get()
            return len(docs)

    @classmethod
    async def find(
        cls,
        filters: Optional[List[FilterType]] = None,
        projection: Optional[Type[BaseModel]] = None,
        order_by: Optional[OrderByType] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        parent: Optional["BaseFirestoreModel"] = None,
    ) -> AsyncGenerator[Union["BaseFirestoreModel", BaseModel], None]:
        """Asynchronously yield documents matching ``filters``."""
        parent_path = cls._resolve_parent_path(parent)
        query = cls._build_query(
            cls._client(),
            filters=filters or [],
            projection=projection,
            order_by=order_by,
            limit=limit,
            offset=offset,
            parent_path=parent_path,
        )
        async for doc in query.stream():
            if projection is None:
                yield cls._from_snapshot(doc, parent_path)
            else:
                data = doc.to_dict()
                data["id"] = doc.id
                yield projection(**data)

    @classmethod
    async def find_all(cls, **kwargs) -> List["BaseFirestoreModel"]:
        return [doc async for doc in cls.find(**kwargs)]

    @classmethod
    async def find_one(
        cls,
        filters: Optional[List[FilterType]] = None,
        projection: Optional[Type[BaseModel]] = None,
        order_by: Optional[OrderByType] = None,
        parent: Optional["BaseFirestoreModel"] = None,
    ) -> Optional["BaseFirestoreModel"]:
        async for obj in cls.find(
            filters=filters, projection=projection, order_by=order_by, limit=1, parent=parent
        ):
            return obj
        return None

    # --------------------------------------------------------------------------
    # Internal query builder
    # --------------------------------------------------------------------------
    @classmethod
    def _build_query(
        cls,
        client,
        filters: Iterable[FilterType],
        projection: Optional[Type[BaseModel]] = None,
        order_by: Optional[OrderByType] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        parent: Optional["BaseFirestoreModel"] = None,
        parent_path: Optional[str] = None,
    ):
        """
        Build a query on ``client`` (async or sync, the query API is shared)
        applying filters, projection, ordering and pagination.
        """
        query = client.collection(cls._get_collection_path(parent=parent, parent_path=parent_path))

        for (field_name, op, value) in filters:
            op_string = op.value if isinstance(op, FirestoreOperators) else op
            query = query.where(filter=FieldFilter(str(field_name), op_string, value))

        if projection:
            select_fields = list(get_model_fields(projection).keys())
            logger.debug(f"Build Query: select fields: {select_fields}")
            query = query.select(select_fields)

        if order_by:
            if not isinstance(order_by, list):
                order_by = [order_by]
            for order_by_field in order_by:
                if isinstance(order_by_field, tuple):
                    field, direction = order_by_field
                    query = query.order_by(str(field), direction=str(direction))
                else:
                    query = query.order_by(str(order_by_field))

        if offset is not None:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query

    # --------------------------------------------------------------------------
    # Batch operations
    # --------------------------------------------------------------------------
    @classmethod
    async def batch_write(cls, operations: List[BatchOp]) -> None:
        """
        Commit create/update/delete operations atomically.

        Either every operation is applied or none is. More than
        ``MAX_BATCH_OPERATIONS`` operations is rejected before anything is
        staged.
        """
        if len(operations) > MAX_BATCH_OPERATIONS:
            raise ValueError(
                f"A batch holds at most {MAX_BATCH_OPERATIONS} operations, got {len(operations)}."
            )
        client = cls._client()
        batch = client.batch()

        for operation in operations:
            op, model_instance = operation[0], operation[1]
            payload = operation[2] if len(operation) > 2 else None

            if not model_instance.id and op != BatchOperation.CREATE:
                raise ValueError(f"Cannot {op} without an ID assigned on {model_instance}.")

            collection_ref = client.collection(
                model_instance._get_collection_path(parent_path=model_instance._parent_path)
            )
            doc_ref = (
                collection_ref.document(model_instance.id)
                if model_instance.id
                else collection_ref.document()
            )

            if op == BatchOperation.CREATE:
                if not model_instance.id:
                    model_instance.id = doc_ref.id
                data_to_save = model_instance._stamp(
                    model_instance.to_firestore(), "create_timestamps"
                )
                batch.set(doc_ref, data_to_save)

            elif op == BatchOperation.UPDATE:
                if isinstance(payload, dict):
                    data_to_update = dict(payload)
                else:
                    data_to_update = model_instance.to_firestore(include=payload)
                batch.update(doc_ref, data_to_update)

            elif op == BatchOperation.DELETE:
                batch.delete(doc_ref)

        logger.debug(f"Batch commit: {len(operations)} operations")
        await batch.commit()
