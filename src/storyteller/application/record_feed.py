"""Live, owner-scoped view over the stories collection."""

from __future__ import annotations

import logging
from collections.abc import Callable

from pydantic import ValidationError

from storyteller.api.contracts import story_record_from_fields
from storyteller.domain.models import StoryRecord, UserMessage, sort_feed
from storyteller.domain.ports import (
    RecordStore,
    StoreDocument,
    Unsubscribe,
    stories_collection_path,
)

logger = logging.getLogger(__name__)


def _noop() -> None:
    return None


def _noop_message(message: UserMessage) -> None:
    del message


class RecordFeed:
    """Hold at most one subscription and a sorted copy of its latest snapshot."""

    def __init__(
        self,
        store: RecordStore,
        *,
        scope_id: str,
        on_change: Callable[[], None] = _noop,
        on_message: Callable[[UserMessage], None] = _noop_message,
    ) -> None:
        self._store = store
        self._scope_id = scope_id
        self._on_change = on_change
        self._on_message = on_message
        self._owner: str | None = None
        self._unsubscribe: Unsubscribe | None = None
        self._generation = 0
        self._view: tuple[StoryRecord, ...] = ()
        self._error: str | None = None
        self._snapshot_count = 0

    @property
    def owner(self) -> str | None:
        return self._owner

    @property
    def view(self) -> tuple[StoryRecord, ...]:
        return self._view

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def subscribed(self) -> bool:
        return self._unsubscribe is not None

    @property
    def snapshot_count(self) -> int:
        return self._snapshot_count

    def find(self, record_id: str) -> StoryRecord | None:
        for record in self._view:
            if record.record_id == record_id:
                return record
        return None

    def follow(self, owner: str | None) -> None:
        """Point the feed at `owner`, closing any previous subscription first."""
        if owner is not None and owner == self._owner and self.subscribed:
            return
        self.close()
        if owner is None:
            return
        self._owner = owner
        self._generation += 1
        generation = self._generation
        path = stories_collection_path(self._scope_id, owner)
        logger.info("feed.subscribe path=%s", path)
        self._unsubscribe = self._store.subscribe(
            path,
            on_snapshot=lambda documents: self._apply_snapshot(generation, documents),
            on_error=lambda exc: self._apply_error(generation, exc),
        )

    def close(self) -> None:
        """Tear down the live subscription and forget the previous owner's view."""
        changed = bool(self._view) or self._error is not None or self._owner is not None
        if self._unsubscribe is not None:
            logger.info("feed.unsubscribe owner=%s", self._owner)
            self._unsubscribe()
            self._unsubscribe = None
        self._generation += 1
        self._owner = None
        self._view = ()
        self._error = None
        if changed:
            self._on_change()

    def _apply_snapshot(self, generation: int, documents: list[StoreDocument]) -> None:
        if generation != self._generation:
            logger.debug("feed.stale_snapshot dropped=%s", len(documents))
            return
        records: list[StoryRecord] = []
        for document in documents:
            try:
                record = story_record_from_fields(document.doc_id, document.fields)
            except ValidationError as exc:
                logger.warning("feed.invalid_document doc_id=%s error=%s", document.doc_id, exc)
                continue
            if record.owner != self._owner:
                logger.warning(
                    "feed.foreign_record doc_id=%s owner=%s", record.record_id, record.owner
                )
                continue
            records.append(record)
        self._view = tuple(sort_feed(records))
        self._error = None
        self._snapshot_count += 1
        logger.debug("feed.snapshot owner=%s records=%s", self._owner, len(self._view))
        self._on_change()

    def _apply_error(self, generation: int, exc: Exception) -> None:
        if generation != self._generation:
            return
        logger.warning("feed.subscription_failed owner=%s error=%s", self._owner, exc)
        self._error = str(exc)
        self._on_message(UserMessage.error(f"Error fetching stories: {exc}"))
        self._on_change()
