"""Domain models and ports for the storyteller session."""

from storyteller.domain.errors import (
    CollaboratorError,
    GenerationServiceError,
    IdentityProviderError,
    RecordStoreError,
)
from storyteller.domain.models import (
    FEEDBACK_LABELS,
    Feedback,
    FeedbackLabel,
    GenerationRequest,
    GenerationState,
    SessionSettings,
    SessionView,
    StoryRecord,
    UserMessage,
)
from storyteller.domain.ports import (
    SERVER_TIMESTAMP,
    GenerationService,
    IdentityProvider,
    RecordStore,
    StoreDocument,
    stories_collection_path,
)

__all__ = [
    "FEEDBACK_LABELS",
    "SERVER_TIMESTAMP",
    "CollaboratorError",
    "Feedback",
    "FeedbackLabel",
    "GenerationRequest",
    "GenerationService",
    "GenerationServiceError",
    "GenerationState",
    "IdentityProvider",
    "IdentityProviderError",
    "RecordStore",
    "RecordStoreError",
    "SessionSettings",
    "SessionView",
    "StoreDocument",
    "StoryRecord",
    "UserMessage",
    "stories_collection_path",
]
