"""Typed contracts for the generation wire format and stored story documents."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from storyteller.domain.models import (
    Feedback,
    FeedbackLabel,
    GenerationRequest,
    StoryRecord,
)


class ContractModel(BaseModel):
    """Base model config used by all storyteller contracts."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class GenerationRequestPayload(ContractModel):
    """JSON body posted to the generation function."""

    keywords: str = Field(min_length=1)
    owner: str = Field(min_length=1, serialization_alias="userId")
    scope_id: str = Field(min_length=1, serialization_alias="appId")

    @classmethod
    def from_request(cls, request: GenerationRequest) -> GenerationRequestPayload:
        return cls(keywords=request.keywords, owner=request.owner, scope_id=request.scope_id)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class GenerationResponsePayload(BaseModel):
    """Successful generation function response."""

    model_config = ConfigDict(extra="ignore")

    narrative: str = Field(validation_alias=AliasChoices("story", "narrative"))

    @field_validator("narrative")
    @classmethod
    def _require_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Generated narrative must be non-empty.")
        return value


class FeedbackDocument(BaseModel):
    """Stored `feedback` sub-document."""

    model_config = ConfigDict(extra="ignore")

    label: FeedbackLabel
    submitted_at: datetime | None = None


class StoryDocument(BaseModel):
    """Stored story document fields as delivered by a record store snapshot."""

    model_config = ConfigDict(extra="ignore")

    owner: str = Field(min_length=1)
    keywords: str
    narrative: str
    created_at: datetime | None = None
    feedback: FeedbackDocument | None = None

    def to_record(self, record_id: str) -> StoryRecord:
        feedback = None
        if self.feedback is not None:
            feedback = Feedback(label=self.feedback.label, submitted_at=self.feedback.submitted_at)
        return StoryRecord(
            record_id=record_id,
            owner=self.owner,
            keywords=self.keywords,
            narrative=self.narrative,
            created_at=self.created_at,
            feedback=feedback,
        )


def story_record_from_fields(record_id: str, fields: Mapping[str, Any]) -> StoryRecord:
    """Validate raw document fields into a domain record."""
    return StoryDocument.model_validate(dict(fields)).to_record(record_id)
