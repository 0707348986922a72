"""HTTP client for the remote story generation function."""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from storyteller.api.contracts import GenerationRequestPayload, GenerationResponsePayload
from storyteller.domain.errors import GenerationServiceError
from storyteller.domain.models import GenerationRequest

logger = logging.getLogger(__name__)


class HttpGenerationService:
    """POST keywords to the generation endpoint and return the narrative text."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @property
    def url(self) -> str:
        return self._url

    async def generate(self, request: GenerationRequest) -> str:
        try:
            payload = GenerationRequestPayload.from_request(request)
        except ValidationError as exc:
            raise GenerationServiceError(f"Invalid generation request: {exc}") from exc
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(self._url, json=payload.to_json())
        except httpx.TimeoutException as exc:
            raise GenerationServiceError(
                f"Backend timed out after {self._timeout_seconds:g}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise GenerationServiceError(f"Backend unreachable: {exc}") from exc

        if not response.is_success:
            body = response.text
            raise GenerationServiceError(
                f"Backend error: {response.status_code} {response.reason_phrase} - {body}",
                status_code=response.status_code,
                body=body,
            )
        try:
            parsed = GenerationResponsePayload.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise GenerationServiceError(
                "Backend returned a malformed story payload.",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        logger.debug(
            "generation.http_ok status=%s chars=%s", response.status_code, len(parsed.narrative)
        )
        return parsed.narrative
