"""One-shot generate-then-persist request lifecycle."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from storyteller.application.identity_session import IdentitySession
from storyteller.domain.errors import GenerationServiceError, RecordStoreError
from storyteller.domain.models import GenerationRequest, GenerationState, UserMessage
from storyteller.domain.ports import (
    SERVER_TIMESTAMP,
    GenerationService,
    RecordStore,
    stories_collection_path,
)

logger = logging.getLogger(__name__)

FAILED_STORY_TEXT = "Failed to generate story."

GenerationOutcome = Literal[
    "saved",
    "unsaved",
    "failed",
    "rejected_busy",
    "rejected_empty",
    "rejected_unauthenticated",
    "discarded",
]


def _noop() -> None:
    return None


def _noop_message(message: UserMessage) -> None:
    del message


@dataclass(frozen=True)
class GenerationResult:
    """What one `generate()` call ended with."""

    outcome: GenerationOutcome
    narrative: str = ""
    record_id: str | None = None


class GenerationRequestController:
    """Drive keywords -> narrative -> stored record with a single in-flight request."""

    def __init__(
        self,
        *,
        identity: IdentitySession,
        service: GenerationService,
        store: RecordStore,
        scope_id: str,
        on_change: Callable[[], None] = _noop,
        on_message: Callable[[UserMessage], None] = _noop_message,
    ) -> None:
        self._identity = identity
        self._service = service
        self._store = store
        self._scope_id = scope_id
        self._on_change = on_change
        self._on_message = on_message
        self._state: GenerationState = "idle"
        self._loading = False
        self._narrative = ""
        self._last_record_id: str | None = None
        self._keywords = ""

    @property
    def state(self) -> GenerationState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def narrative(self) -> str:
        return self._narrative

    @property
    def last_record_id(self) -> str | None:
        return self._last_record_id

    @property
    def keywords(self) -> str:
        return self._keywords

    def set_keywords(self, keywords: str) -> None:
        if self._loading:
            return
        self._keywords = keywords
        self._on_change()

    def reset(self) -> None:
        """Forget the displayed story, e.g. after the identity changed."""
        if self._loading:
            return
        self._state = "idle"
        self._narrative = ""
        self._last_record_id = None
        self._on_change()

    async def generate(self, keywords: str | None = None) -> GenerationResult:
        """Generate a story for `keywords` (or the current input) and persist it."""
        if self._loading:
            logger.info("generation.rejected reason=busy")
            return GenerationResult(outcome="rejected_busy")
        if keywords is not None:
            self._keywords = keywords
        text = self._keywords
        if not text.strip():
            self._on_message(UserMessage.error("Please enter some keywords for your story."))
            return GenerationResult(outcome="rejected_empty")
        owner = self._identity.subject_id
        if not self._identity.ready or owner is None:
            self._on_message(UserMessage.error("Not authenticated: sign-in has not completed."))
            return GenerationResult(outcome="rejected_unauthenticated")

        self._loading = True
        self._state = "loading"
        self._narrative = ""
        self._last_record_id = None
        self._on_message(UserMessage.info("Generating your story..."))
        self._on_change()
        try:
            return await self._run(text, owner)
        finally:
            self._loading = False
            if self._state == "loading":
                self._state = "error"
            logger.debug("generation.settled state=%s", self._state)
            self._on_change()

    async def _run(self, text: str, owner: str) -> GenerationResult:
        request = GenerationRequest(keywords=text, owner=owner, scope_id=self._scope_id)
        try:
            narrative = await self._service.generate(request)
        except GenerationServiceError as exc:
            if self._identity_changed(owner):
                return self._discard()
            logger.warning("generation.failed status=%s error=%s", exc.status_code, exc)
            self._state = "error"
            self._narrative = FAILED_STORY_TEXT
            self._on_message(UserMessage.error(f"Error: {exc}"))
            return GenerationResult(outcome="failed")

        if self._identity_changed(owner):
            return self._discard()
        self._state = "success"
        self._narrative = narrative
        self._on_message(UserMessage.info("Story generated! Please provide feedback."))
        self._on_change()

        fields = {
            "owner": owner,
            "keywords": text,
            "narrative": narrative,
            "created_at": SERVER_TIMESTAMP,
            "feedback": None,
        }
        try:
            record_id = await self._store.create(
                stories_collection_path(self._scope_id, owner), fields
            )
        except RecordStoreError as exc:
            if self._identity_changed(owner):
                return self._discard()
            logger.warning("generation.persist_failed owner=%s error=%s", owner, exc)
            self._on_message(UserMessage.error(f"Story generated but not saved: {exc}"))
            return GenerationResult(outcome="unsaved", narrative=narrative)

        if self._identity_changed(owner):
            return self._discard()
        self._last_record_id = record_id
        self._keywords = ""
        logger.info("generation.saved owner=%s record_id=%s", owner, record_id)
        return GenerationResult(outcome="saved", narrative=narrative, record_id=record_id)

    def _identity_changed(self, owner: str) -> bool:
        return self._identity.subject_id != owner

    def _discard(self) -> GenerationResult:
        logger.info("generation.discarded reason=identity_changed")
        self._state = "idle"
        self._narrative = ""
        self._last_record_id = None
        return GenerationResult(outcome="discarded")
