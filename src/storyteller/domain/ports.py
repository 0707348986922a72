"""Ports for identity, generation, and record persistence."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Final, Protocol

from storyteller.domain.models import GenerationRequest


class _ServerTimestamp:
    """Placeholder resolved to the store's clock when a write lands."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP: Final = _ServerTimestamp()

Unsubscribe = Callable[[], None]
IdentityListener = Callable[[str | None], None]


@dataclass(frozen=True)
class StoreDocument:
    """One document inside a collection snapshot."""

    doc_id: str
    fields: Mapping[str, Any] = field(default_factory=dict)


SnapshotListener = Callable[[list[StoreDocument]], None]
ErrorListener = Callable[[Exception], None]


def stories_collection_path(scope_id: str, owner: str) -> str:
    """Collection that holds one owner's stories in one deployment scope."""
    return f"artifacts/{scope_id}/users/{owner}/stories"


class IdentityProvider(Protocol):
    """Issues opaque subject identifiers."""

    async def resume(self) -> str | None:
        ...

    async def sign_in_anonymously(self) -> str:
        ...

    async def exchange_token(self, token: str) -> str:
        ...

    async def sign_out(self) -> None:
        ...

    def on_change(self, listener: IdentityListener) -> Unsubscribe:
        ...


class GenerationService(Protocol):
    """Turns keywords into narrative text."""

    async def generate(self, request: GenerationRequest) -> str:
        ...


class RecordStore(Protocol):
    """Document collections with live full-snapshot subscriptions."""

    async def create(self, collection_path: str, fields: Mapping[str, Any]) -> str:
        ...

    async def update(
        self, collection_path: str, record_id: str, fields: Mapping[str, Any]
    ) -> None:
        ...

    def subscribe(
        self,
        collection_path: str,
        *,
        on_snapshot: SnapshotListener,
        on_error: ErrorListener,
    ) -> Unsubscribe:
        ...
