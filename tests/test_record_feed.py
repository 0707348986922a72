from __future__ import annotations

import asyncio
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from storyteller.adapters.memory_record_store import InMemoryRecordStore
from storyteller.application.record_feed import RecordFeed
from storyteller.domain.errors import RecordStoreError
from storyteller.domain.models import UserMessage
from storyteller.domain.ports import (
    SERVER_TIMESTAMP,
    ErrorListener,
    SnapshotListener,
    StoreDocument,
    Unsubscribe,
    stories_collection_path,
)

BASE = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class _CapturingStore:
    """Store double that hands snapshot delivery to the test."""

    def __init__(self) -> None:
        self.events: list[str] = []
        self.listeners: dict[str, tuple[SnapshotListener, ErrorListener]] = {}

    async def create(self, collection_path: str, fields: Mapping[str, Any]) -> str:
        raise AssertionError("feed must not write")

    async def update(
        self, collection_path: str, record_id: str, fields: Mapping[str, Any]
    ) -> None:
        raise AssertionError("feed must not write")

    def subscribe(
        self,
        collection_path: str,
        *,
        on_snapshot: SnapshotListener,
        on_error: ErrorListener,
    ) -> Unsubscribe:
        self.events.append(f"open:{collection_path}")
        self.listeners[collection_path] = (on_snapshot, on_error)

        def unsubscribe() -> None:
            self.events.append(f"close:{collection_path}")

        return unsubscribe

    def push(self, collection_path: str, documents: list[StoreDocument]) -> None:
        self.listeners[collection_path][0](documents)

    def fail(self, collection_path: str, error: Exception) -> None:
        self.listeners[collection_path][1](error)


def _doc(doc_id: str, owner: str, created_at: datetime | None, **extra: Any) -> StoreDocument:
    fields: dict[str, Any] = {
        "owner": owner,
        "keywords": f"keywords {doc_id}",
        "narrative": f"story {doc_id}",
        "created_at": created_at,
        "feedback": None,
    }
    fields.update(extra)
    return StoreDocument(doc_id=doc_id, fields=fields)


def test_feed_does_not_subscribe_without_owner() -> None:
    store = _CapturingStore()
    feed = RecordFeed(store, scope_id="app-1")
    feed.follow(None)
    assert store.events == []
    assert feed.subscribed is False


def test_owner_change_closes_previous_subscription_before_opening_next() -> None:
    store = _CapturingStore()
    feed = RecordFeed(store, scope_id="app-1")
    alice = stories_collection_path("app-1", "alice")
    bob = stories_collection_path("app-1", "bob")

    feed.follow("alice")
    feed.follow("alice")
    feed.follow("bob")
    feed.follow(None)

    assert store.events == [f"open:{alice}", f"close:{alice}", f"open:{bob}", f"close:{bob}"]
    assert feed.subscribed is False
    assert feed.view == ()


def test_snapshot_is_sorted_with_pending_first() -> None:
    store = _CapturingStore()
    feed = RecordFeed(store, scope_id="app-1")
    feed.follow("alice")
    path = stories_collection_path("app-1", "alice")

    store.push(
        path,
        [
            _doc("t2", "alice", BASE + timedelta(minutes=2)),
            _doc("t3", "alice", BASE + timedelta(minutes=1)),
            _doc("p", "alice", None),
            _doc("t1", "alice", BASE + timedelta(minutes=3)),
        ],
    )
    assert [record.record_id for record in feed.view] == ["p", "t1", "t2", "t3"]

    store.push(
        path,
        [
            _doc("t2", "alice", BASE + timedelta(minutes=2)),
            _doc("t3", "alice", BASE + timedelta(minutes=1)),
            _doc("p", "alice", BASE + timedelta(minutes=4)),
            _doc("t1", "alice", BASE + timedelta(minutes=3)),
        ],
    )
    assert [record.record_id for record in feed.view] == ["p", "t1", "t2", "t3"]
    assert feed.view[0].created_at == BASE + timedelta(minutes=4)

    store.push(
        path,
        [
            _doc("t1", "alice", BASE + timedelta(minutes=3)),
            _doc("old", "alice", BASE - timedelta(days=1)),
            _doc("new", "alice", None),
        ],
    )
    assert [record.record_id for record in feed.view] == ["new", "t1", "old"]


def test_feed_drops_foreign_and_malformed_documents() -> None:
    store = _CapturingStore()
    feed = RecordFeed(store, scope_id="app-1")
    feed.follow("alice")
    path = stories_collection_path("app-1", "alice")

    store.push(
        path,
        [
            _doc("mine", "alice", BASE),
            _doc("theirs", "mallory", BASE),
            StoreDocument(doc_id="broken", fields={"owner": "alice"}),
            _doc("rated", "alice", BASE, feedback={"label": "loved", "submitted_at": BASE}),
        ],
    )

    assert {record.record_id for record in feed.view} == {"mine", "rated"}
    assert all(record.owner == "alice" for record in feed.view)
    rated = feed.find("rated")
    assert rated is not None and rated.feedback is not None
    assert rated.feedback.label == "loved"


def test_subscription_error_keeps_last_good_view() -> None:
    store = _CapturingStore()
    messages: list[UserMessage] = []
    feed = RecordFeed(store, scope_id="app-1", on_message=messages.append)
    feed.follow("alice")
    path = stories_collection_path("app-1", "alice")
    store.push(path, [_doc("a", "alice", BASE)])

    store.fail(path, RecordStoreError("permission denied"))

    assert [record.record_id for record in feed.view] == ["a"]
    assert feed.error == "permission denied"
    assert messages[-1] == UserMessage.error("Error fetching stories: permission denied")

    store.push(path, [_doc("a", "alice", BASE), _doc("b", "alice", BASE + timedelta(seconds=1))])
    assert feed.error is None
    assert [record.record_id for record in feed.view] == ["b", "a"]


def test_notifications_from_closed_subscription_are_ignored() -> None:
    store = _CapturingStore()
    feed = RecordFeed(store, scope_id="app-1")
    feed.follow("alice")
    alice = stories_collection_path("app-1", "alice")
    feed.follow("bob")

    store.push(alice, [_doc("late", "alice", BASE)])
    store.fail(alice, RecordStoreError("late failure"))

    assert feed.view == ()
    assert feed.error is None
    assert feed.owner == "bob"


def test_memory_store_pending_timestamp_resolves_and_resorts() -> None:
    async def scenario() -> None:
        store = InMemoryRecordStore(resolve_delay_seconds=None)
        changes: list[int] = []
        feed = RecordFeed(store, scope_id="app-1", on_change=lambda: changes.append(1))
        path = stories_collection_path("app-1", "alice")
        store_fields = {"owner": "alice", "keywords": "k", "narrative": "n", "feedback": None}
        await store.create(path, {**store_fields, "created_at": BASE})
        feed.follow("alice")
        await _settle()
        assert [record.is_pending for record in feed.view] == [False]

        await store.create(path, {**store_fields, "created_at": SERVER_TIMESTAMP})
        await _settle()
        assert [record.is_pending for record in feed.view] == [True, False]

        store.resolve_pending()
        await _settle()
        assert [record.is_pending for record in feed.view] == [False, False]
        assert feed.view[0].created_at is not None
        assert feed.view[0].created_at > BASE
        assert feed.snapshot_count == 3

    asyncio.run(scenario())


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)
