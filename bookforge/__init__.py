# bookforge/__init__.py
from typing import List, Optional, Type

from .auth import AuthContext
from .chapter_ordering import ChapterOrderingEngine
from .clock import DebounceTimer, LoopClock, VirtualClock
from .config import BookforgeSettings
from .deletion import DeletionOrchestrator, DeletionReport
from .draft_sync import DraftSyncEngine
from .enums import (
    BatchOperation,
    BookStatus,
    FirestoreOperators,
    OrderByDirection,
    OutcomeStatus,
    SaveState,
)
from .errors import (
    BookforgeError,
    DraftSaveError,
    MinimumChapterCountError,
    MissingCoverImageError,
    StoreError,
    ValidationError,
)
from .firestore_client import FirestoreDB
from .firestore_fields import FirestoreField
from .firestore_model import BaseFirestoreModel
from .models import ALL_MODELS, Book, Chapter, Review, UserProfile
from .publish import PublishGate, PublishResult
from .session import EditorSession, Notice, Outcome
from .subcollection_accessor import SubCollectionAccessor


def init_bookforge(
    database: FirestoreDB,
    document_models: Optional[List[Type[BaseFirestoreModel]]] = None,
) -> FirestoreDB:
    """Bind the document models (all of bookforge's by default) to ``database``."""
    for model in document_models or ALL_MODELS:
        model.initialize_db(database)
        model.initialize_fields()
    return database


__all__ = [
    "AuthContext",
    "BaseFirestoreModel",
    "BatchOperation",
    "Book",
    "BookStatus",
    "BookforgeError",
    "BookforgeSettings",
    "Chapter",
    "ChapterOrderingEngine",
    "DebounceTimer",
    "DeletionOrchestrator",
    "DeletionReport",
    "DraftSaveError",
    "DraftSyncEngine",
    "EditorSession",
    "FirestoreDB",
    "FirestoreField",
    "FirestoreOperators",
    "LoopClock",
    "MinimumChapterCountError",
    "MissingCoverImageError",
    "Notice",
    "OrderByDirection",
    "Outcome",
    "OutcomeStatus",
    "PublishGate",
    "PublishResult",
    "Review",
    "SaveState",
    "StoreError",
    "SubCollectionAccessor",
    "UserProfile",
    "ValidationError",
    "VirtualClock",
    "init_bookforge",
]
