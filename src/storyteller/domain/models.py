"""Core storyteller domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Final, Literal

FeedbackLabel = Literal["loved", "too_short", "more_humor", "more_adventure", "not_my_style"]
GenerationState = Literal["idle", "loading", "success", "error"]
MessageLevel = Literal["info", "error"]

FEEDBACK_LABELS: Final[tuple[FeedbackLabel, ...]] = (
    "loved",
    "too_short",
    "more_humor",
    "more_adventure",
    "not_my_style",
)


def is_feedback_label(value: str) -> bool:
    return value in FEEDBACK_LABELS


@dataclass(frozen=True)
class Feedback:
    """Terminal label attached to one story record."""

    label: FeedbackLabel
    submitted_at: datetime | None = None


@dataclass(frozen=True)
class StoryRecord:
    """A persisted generated story.

    `created_at` is None while the store has not yet resolved the server
    timestamp for a fresh write.
    """

    record_id: str
    owner: str
    keywords: str
    narrative: str
    created_at: datetime | None = None
    feedback: Feedback | None = None

    @property
    def is_pending(self) -> bool:
        return self.created_at is None


@dataclass(frozen=True)
class GenerationRequest:
    """Inputs sent to the remote generation service."""

    keywords: str
    owner: str
    scope_id: str


@dataclass(frozen=True)
class UserMessage:
    """Status line shown to the user."""

    text: str
    level: MessageLevel = "info"

    @property
    def is_error(self) -> bool:
        return self.level == "error"

    @classmethod
    def info(cls, text: str) -> UserMessage:
        return cls(text=text, level="info")

    @classmethod
    def error(cls, text: str) -> UserMessage:
        return cls(text=text, level="error")


@dataclass(frozen=True)
class SessionView:
    """Everything the presentation layer needs to draw one frame."""

    auth_ready: bool = False
    subject_id: str | None = None
    feed: tuple[StoryRecord, ...] = ()
    feed_error: str | None = None
    generation_state: GenerationState = "idle"
    generated_story: str = ""
    last_record_id: str | None = None
    keywords: str = ""
    message: UserMessage | None = None
    show_history: bool = False
    feedback_labels: tuple[FeedbackLabel, ...] = field(default=FEEDBACK_LABELS)

    @property
    def loading(self) -> bool:
        return self.generation_state == "loading"

    @property
    def can_generate(self) -> bool:
        return self.auth_ready and self.subject_id is not None and not self.loading

    @property
    def can_submit_feedback(self) -> bool:
        return self.last_record_id is not None and not self.loading


def feed_sort_key(record: StoryRecord) -> tuple[int, float]:
    """Sort key for newest-first ordering with pending writes on top."""
    if record.created_at is None:
        return (0, 0.0)
    return (1, -record.created_at.timestamp())


def sort_feed(records: list[StoryRecord]) -> list[StoryRecord]:
    return sorted(records, key=feed_sort_key)


@dataclass(frozen=True)
class SessionSettings:
    """Deployment scope plus an optional pre-supplied sign-in token."""

    scope_id: str
    token: str | None = None
