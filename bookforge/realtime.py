"""
Real-time listeners.

Firestore calls ``on_snapshot`` callbacks from a background thread. The
helpers here parse each snapshot into models and hand the result to the
asyncio loop with ``call_soon_threadsafe``, so subscribers always run on the
loop thread. Every snapshot is delivered whole; subscribers treat it as an
authoritative replacement of what they hold.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Type

from .firestore_model import BaseFirestoreModel, FilterType, OrderByType

logger = logging.getLogger(__name__)


class Subscription:
    """Handle returned by the ``listen_*`` helpers."""

    def __init__(self, description: str):
        self.description = description
        self._watch = None
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def attach(self, watch) -> None:
        self._watch = watch

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._watch is not None:
            self._watch.unsubscribe()
        logger.debug(f"Unsubscribed from {self.description}")


def _deliverer(subscription: Subscription, callback, loop: asyncio.AbstractEventLoop):
    def deliver(payload) -> None:
        if subscription.active:
            callback(payload)

    def from_thread(payload) -> None:
        if loop.is_closed():
            return
        loop.call_soon_threadsafe(deliver, payload)

    return from_thread


def listen_document(
    model_cls: Type[BaseFirestoreModel],
    doc_id: str,
    callback: Callable[[Optional[BaseFirestoreModel]], None],
    parent: Optional[BaseFirestoreModel] = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> Subscription:
    """Call ``callback(model)`` on every change, ``callback(None)`` once deleted."""
    loop = loop or asyncio.get_running_loop()
    parent_path = model_cls._resolve_parent_path(parent)
    path = model_cls._get_collection_path(parent_path=parent_path)
    subscription = Subscription(f"{path}/{doc_id}")
    push = _deliverer(subscription, callback, loop)

    def on_snapshot(docs, changes, read_time):
        for doc in docs:
            push(model_cls._from_snapshot(doc, parent_path) if doc.exists else None)

    client = model_cls._db.listener_client
    subscription.attach(client.collection(path).document(doc_id).on_snapshot(on_snapshot))
    logger.debug(f"Listening to {subscription.description}")
    return subscription


def listen_query(
    model_cls: Type[BaseFirestoreModel],
    callback: Callable[[List[BaseFirestoreModel]], None],
    filters: Optional[List[FilterType]] = None,
    order_by: Optional[OrderByType] = None,
    parent: Optional[BaseFirestoreModel] = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> Subscription:
    """Call ``callback(models)`` with the full result set on every change."""
    loop = loop or asyncio.get_running_loop()
    parent_path = model_cls._resolve_parent_path(parent)
    subscription = Subscription(model_cls._get_collection_path(parent_path=parent_path))
    push = _deliverer(subscription, callback, loop)

    def on_snapshot(docs, changes, read_time):
        push([model_cls._from_snapshot(doc, parent_path) for doc in docs])

    query = model_cls._build_query(
        model_cls._db.listener_client,
        filters=filters or [],
        order_by=order_by,
        parent_path=parent_path,
    )
    subscription.attach(query.on_snapshot(on_snapshot))
    logger.debug(f"Listening to {subscription.description}")
    return subscription
