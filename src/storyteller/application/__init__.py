"""Session components: identity, feed, generation, feedback, orchestration."""

from storyteller.application.feedback import FeedbackSubmissionController
from storyteller.application.generation import (
    GenerationRequestController,
    GenerationResult,
)
from storyteller.application.identity_session import IdentitySession
from storyteller.application.orchestrator import SessionOrchestrator
from storyteller.application.record_feed import RecordFeed

__all__ = [
    "FeedbackSubmissionController",
    "GenerationRequestController",
    "GenerationResult",
    "IdentitySession",
    "RecordFeed",
    "SessionOrchestrator",
]
