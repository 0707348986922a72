"""In-process record store with live snapshots and delayed server timestamps."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from storyteller.adapters.document_fields import (
    copy_fields,
    has_server_timestamp,
    mask_server_timestamps,
    merge_fields,
    resolve_server_timestamps,
)
from storyteller.domain.errors import RecordStoreError
from storyteller.domain.ports import (
    ErrorListener,
    SnapshotListener,
    StoreDocument,
    Unsubscribe,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class _Subscription:
    on_snapshot: SnapshotListener
    on_error: ErrorListener
    active: bool = True


class InMemoryRecordStore:
    """Dict-backed document collections.

    Writes are broadcast first with server timestamps still pending
    (read back as None) and again once they resolve. With
    `resolve_delay_seconds=None` resolution only happens through
    `resolve_pending()`.
    """

    def __init__(
        self,
        *,
        resolve_delay_seconds: float | None = 0.0,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._resolve_delay_seconds = resolve_delay_seconds
        self._clock = clock
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)

    def subscriber_count(self, collection_path: str | None = None) -> int:
        if collection_path is not None:
            return len(self._subscriptions.get(collection_path, []))
        return sum(len(subscriptions) for subscriptions in self._subscriptions.values())

    def documents(self, collection_path: str) -> list[StoreDocument]:
        return self._snapshot(collection_path)

    async def create(self, collection_path: str, fields: Mapping[str, Any]) -> str:
        doc_id = uuid4().hex
        self._collections[collection_path][doc_id] = copy_fields(fields)
        logger.debug("store.create path=%s doc_id=%s", collection_path, doc_id)
        self._after_write(collection_path)
        return doc_id

    async def update(
        self, collection_path: str, record_id: str, fields: Mapping[str, Any]
    ) -> None:
        documents = self._collections.get(collection_path, {})
        if record_id not in documents:
            raise RecordStoreError(f"No document {record_id} in {collection_path}.")
        documents[record_id] = merge_fields(documents[record_id], fields)
        logger.debug("store.update path=%s doc_id=%s", collection_path, record_id)
        self._after_write(collection_path)

    def subscribe(
        self,
        collection_path: str,
        *,
        on_snapshot: SnapshotListener,
        on_error: ErrorListener,
    ) -> Unsubscribe:
        subscription = _Subscription(on_snapshot=on_snapshot, on_error=on_error)
        self._subscriptions[collection_path].append(subscription)
        asyncio.get_running_loop().call_soon(self._deliver, collection_path, subscription)

        def unsubscribe() -> None:
            subscription.active = False
            subscriptions = self._subscriptions.get(collection_path, [])
            if subscription in subscriptions:
                subscriptions.remove(subscription)

        return unsubscribe

    def resolve_pending(self) -> None:
        """Resolve every outstanding server timestamp and broadcast the change."""
        now = self._clock()
        for collection_path, documents in self._collections.items():
            changed = False
            for doc_id, fields in documents.items():
                if has_server_timestamp(fields):
                    documents[doc_id] = resolve_server_timestamps(fields, now)
                    changed = True
            if changed:
                self._broadcast(collection_path)

    def broadcast_error(self, collection_path: str, error: Exception) -> None:
        """Deliver a listener failure to every subscriber of `collection_path`."""
        loop = asyncio.get_running_loop()
        for subscription in list(self._subscriptions.get(collection_path, [])):
            loop.call_soon(self._deliver_error, subscription, error)

    def _after_write(self, collection_path: str) -> None:
        self._broadcast(collection_path)
        if self._resolve_delay_seconds is None:
            return
        loop = asyncio.get_running_loop()
        if self._resolve_delay_seconds <= 0:
            loop.call_soon(self.resolve_pending)
        else:
            loop.call_later(self._resolve_delay_seconds, self.resolve_pending)

    def _broadcast(self, collection_path: str) -> None:
        loop = asyncio.get_running_loop()
        for subscription in list(self._subscriptions.get(collection_path, [])):
            loop.call_soon(self._deliver, collection_path, subscription)

    def _snapshot(self, collection_path: str) -> list[StoreDocument]:
        return [
            StoreDocument(doc_id=doc_id, fields=mask_server_timestamps(fields))
            for doc_id, fields in self._collections.get(collection_path, {}).items()
        ]

    def _deliver(self, collection_path: str, subscription: _Subscription) -> None:
        if subscription.active:
            subscription.on_snapshot(self._snapshot(collection_path))

    @staticmethod
    def _deliver_error(subscription: _Subscription, error: Exception) -> None:
        if subscription.active:
            subscription.on_error(error)
