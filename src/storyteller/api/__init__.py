"""Wire and document contracts shared by adapters and the session core."""

from storyteller.api.contracts import (
    ContractModel,
    GenerationRequestPayload,
    GenerationResponsePayload,
    StoryDocument,
    story_record_from_fields,
)

__all__ = [
    "ContractModel",
    "GenerationRequestPayload",
    "GenerationResponsePayload",
    "StoryDocument",
    "story_record_from_fields",
]
