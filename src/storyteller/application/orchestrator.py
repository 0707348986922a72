"""Compose identity, feed, generation, and feedback into one session view."""

from __future__ import annotations

import logging
from collections.abc import Callable

from storyteller.application.feedback import FeedbackSubmissionController
from storyteller.application.generation import GenerationRequestController, GenerationResult
from storyteller.application.identity_session import IdentitySession
from storyteller.application.record_feed import RecordFeed
from storyteller.domain.models import SessionSettings, SessionView, UserMessage
from storyteller.domain.ports import (
    GenerationService,
    IdentityProvider,
    RecordStore,
    Unsubscribe,
)

logger = logging.getLogger(__name__)

ViewListener = Callable[[SessionView], None]


class SessionOrchestrator:
    """Own the wiring between components and re-derive the view after every change.

    The orchestrator performs no I/O itself; it only sequences the
    components so that the feed never subscribes before identity is
    resolved and is torn down whenever identity changes.
    """

    def __init__(
        self,
        *,
        identity_provider: IdentityProvider,
        generation_service: GenerationService,
        record_store: RecordStore,
        settings: SessionSettings,
    ) -> None:
        self._message: UserMessage | None = None
        self._show_history = False
        self._listeners: list[ViewListener] = []
        self._view = SessionView()
        self.identity = IdentitySession(
            identity_provider, settings, on_message=self._post_message
        )
        self.feed = RecordFeed(
            record_store,
            scope_id=settings.scope_id,
            on_change=self._refresh,
            on_message=self._post_message,
        )
        self.generation = GenerationRequestController(
            identity=self.identity,
            service=generation_service,
            store=record_store,
            scope_id=settings.scope_id,
            on_change=self._refresh,
            on_message=self._post_message,
        )
        self.feedback = FeedbackSubmissionController(
            identity=self.identity,
            store=record_store,
            scope_id=settings.scope_id,
            on_message=self._post_message,
        )
        self._identity_unsubscribe = self.identity.add_listener(self._on_subject_change)

    @property
    def view(self) -> SessionView:
        return self._view

    def add_listener(self, listener: ViewListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self) -> SessionView:
        """Establish identity; the feed follows once the subject is known."""
        await self.identity.establish()
        self._refresh()
        return self._view

    async def generate(self, keywords: str | None = None) -> GenerationResult:
        return await self.generation.generate(keywords)

    async def submit_feedback(self, label: str, record_id: str | None = None) -> bool:
        target = record_id if record_id is not None else self.generation.last_record_id
        submitted = await self.feedback.submit(target, label)
        self._refresh()
        return submitted

    def set_keywords(self, keywords: str) -> None:
        self.generation.set_keywords(keywords)

    def toggle_history(self) -> bool:
        self._show_history = not self._show_history
        self._refresh()
        return self._show_history

    async def sign_out(self) -> None:
        await self.identity.sign_out()
        self._refresh()

    def close(self) -> None:
        self._identity_unsubscribe()
        self.identity.close()
        self.feed.close()
        self._listeners.clear()

    def _on_subject_change(self, subject: str | None) -> None:
        logger.info("session.subject_changed subject=%s", subject or "-")
        # follow() closes the previous subscription before opening a new one.
        self.feed.follow(subject if self.identity.ready else None)
        self.generation.reset()
        self._refresh()

    def _post_message(self, message: UserMessage) -> None:
        self._message = message
        self._refresh()

    def _refresh(self) -> None:
        self._view = SessionView(
            auth_ready=self.identity.ready,
            subject_id=self.identity.subject_id,
            feed=self.feed.view,
            feed_error=self.feed.error,
            generation_state=self.generation.state,
            generated_story=self.generation.narrative,
            last_record_id=self.generation.last_record_id,
            keywords=self.generation.keywords,
            message=self._message,
            show_history=self._show_history,
        )
        for listener in list(self._listeners):
            listener(self._view)
