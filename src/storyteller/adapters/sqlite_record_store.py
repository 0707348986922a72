"""SQLite-backed document collections with in-process live snapshots."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from storyteller.adapters.document_fields import (
    merge_fields,
    resolve_server_timestamps,
    to_json_value,
)
from storyteller.domain.errors import RecordStoreError
from storyteller.domain.ports import (
    ErrorListener,
    SnapshotListener,
    StoreDocument,
    Unsubscribe,
)

logger = logging.getLogger(__name__)


@dataclass
class _Subscription:
    on_snapshot: SnapshotListener
    on_error: ErrorListener
    active: bool = True


class SQLiteRecordStore:
    """Persist story documents in one SQLite database.

    Server timestamps resolve at write time. Subscribers registered in this
    process receive a full snapshot after every write.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)
        self._delivery_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self._db_path))
        connection.row_factory = sqlite3.Row
        return connection

    def _initialize_schema(self) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection_path TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    fields_json TEXT NOT NULL,
                    created_at_utc TEXT NOT NULL,
                    updated_at_utc TEXT NOT NULL,
                    PRIMARY KEY (collection_path, doc_id)
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_documents_collection_created
                ON documents(collection_path, created_at_utc DESC)
                """
            )

    async def create(self, collection_path: str, fields: Mapping[str, Any]) -> str:
        doc_id = uuid4().hex
        try:
            await asyncio.to_thread(self._insert, collection_path, doc_id, dict(fields))
        except sqlite3.Error as exc:
            raise RecordStoreError(f"Could not save story: {exc}") from exc
        logger.debug("store.create path=%s doc_id=%s", collection_path, doc_id)
        self._broadcast(collection_path)
        return doc_id

    async def update(
        self, collection_path: str, record_id: str, fields: Mapping[str, Any]
    ) -> None:
        try:
            updated = await asyncio.to_thread(
                self._merge, collection_path, record_id, dict(fields)
            )
        except sqlite3.Error as exc:
            raise RecordStoreError(f"Could not update story: {exc}") from exc
        if not updated:
            raise RecordStoreError(f"No document {record_id} in {collection_path}.")
        logger.debug("store.update path=%s doc_id=%s", collection_path, record_id)
        self._broadcast(collection_path)

    def subscribe(
        self,
        collection_path: str,
        *,
        on_snapshot: SnapshotListener,
        on_error: ErrorListener,
    ) -> Unsubscribe:
        subscription = _Subscription(on_snapshot=on_snapshot, on_error=on_error)
        self._subscriptions[collection_path].append(subscription)
        self._schedule_delivery(collection_path, subscription)

        def unsubscribe() -> None:
            subscription.active = False
            subscriptions = self._subscriptions.get(collection_path, [])
            if subscription in subscriptions:
                subscriptions.remove(subscription)

        return unsubscribe

    def list_documents(self, collection_path: str) -> list[StoreDocument]:
        """Read the current collection contents synchronously."""
        with self._connect() as connection:
            rows = connection.execute(
                """
                SELECT doc_id, fields_json
                FROM documents
                WHERE collection_path = ?
                ORDER BY created_at_utc ASC, rowid ASC
                """,
                (collection_path,),
            ).fetchall()
        return [
            StoreDocument(doc_id=str(row["doc_id"]), fields=json.loads(str(row["fields_json"])))
            for row in rows
        ]

    def _insert(self, collection_path: str, doc_id: str, fields: dict[str, Any]) -> None:
        now = datetime.now(UTC)
        stored = to_json_value(resolve_server_timestamps(fields, now))
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO documents (collection_path, doc_id, fields_json, created_at_utc, updated_at_utc)
                VALUES (?, ?, ?, ?, ?)
                """,
                (collection_path, doc_id, json.dumps(stored), now.isoformat(), now.isoformat()),
            )

    def _merge(self, collection_path: str, doc_id: str, fields: dict[str, Any]) -> bool:
        now = datetime.now(UTC)
        with self._connect() as connection:
            row = connection.execute(
                """
                SELECT fields_json
                FROM documents
                WHERE collection_path = ? AND doc_id = ?
                """,
                (collection_path, doc_id),
            ).fetchone()
            if row is None:
                return False
            existing = json.loads(str(row["fields_json"]))
            patch = to_json_value(resolve_server_timestamps(fields, now))
            merged = merge_fields(existing, patch)
            connection.execute(
                """
                UPDATE documents
                SET fields_json = ?, updated_at_utc = ?
                WHERE collection_path = ? AND doc_id = ?
                """,
                (json.dumps(merged), now.isoformat(), collection_path, doc_id),
            )
        return True

    def _broadcast(self, collection_path: str) -> None:
        for subscription in list(self._subscriptions.get(collection_path, [])):
            self._schedule_delivery(collection_path, subscription)

    def _schedule_delivery(self, collection_path: str, subscription: _Subscription) -> None:
        task = asyncio.get_running_loop().create_task(
            self._deliver(collection_path, subscription)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, collection_path: str, subscription: _Subscription) -> None:
        async with self._delivery_lock:
            if not subscription.active:
                return
            try:
                documents = await asyncio.to_thread(self.list_documents, collection_path)
            except (sqlite3.Error, ValueError) as exc:
                logger.warning("store.snapshot_failed path=%s error=%s", collection_path, exc)
                if subscription.active:
                    subscription.on_error(RecordStoreError(f"Could not read stories: {exc}"))
                return
            if subscription.active:
                subscription.on_snapshot(documents)
