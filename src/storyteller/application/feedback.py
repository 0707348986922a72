"""Attach a feedback label to an existing story record."""

from __future__ import annotations

import logging
from collections.abc import Callable

from storyteller.application.identity_session import IdentitySession
from storyteller.domain.errors import RecordStoreError
from storyteller.domain.models import UserMessage, is_feedback_label
from storyteller.domain.ports import SERVER_TIMESTAMP, RecordStore, stories_collection_path

logger = logging.getLogger(__name__)


def _noop_message(message: UserMessage) -> None:
    del message


class FeedbackSubmissionController:
    """Patch the `feedback` field of one record; later submissions overwrite it."""

    def __init__(
        self,
        *,
        identity: IdentitySession,
        store: RecordStore,
        scope_id: str,
        on_message: Callable[[UserMessage], None] = _noop_message,
    ) -> None:
        self._identity = identity
        self._store = store
        self._scope_id = scope_id
        self._on_message = on_message

    async def submit(self, record_id: str | None, label: str) -> bool:
        if not is_feedback_label(label):
            self._on_message(UserMessage.error(f"Unknown feedback label '{label}'."))
            return False
        owner = self._identity.subject_id
        if not self._identity.ready or owner is None:
            self._on_message(UserMessage.error("Not authenticated: sign-in has not completed."))
            return False
        if not record_id:
            self._on_message(UserMessage.error("No story selected for feedback."))
            return False

        self._on_message(UserMessage.info(f"Submitting feedback for story {record_id}..."))
        try:
            await self._store.update(
                stories_collection_path(self._scope_id, owner),
                record_id,
                {"feedback": {"label": label, "submitted_at": SERVER_TIMESTAMP}},
            )
        except RecordStoreError as exc:
            logger.warning("feedback.failed record_id=%s label=%s error=%s", record_id, label, exc)
            self._on_message(UserMessage.error(f"Error submitting feedback: {exc}"))
            return False
        logger.info("feedback.submitted record_id=%s label=%s", record_id, label)
        self._on_message(UserMessage.info(f"Feedback '{label}' submitted!"))
        return True
