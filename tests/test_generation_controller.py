from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import httpx
import pytest

from storyteller.adapters.http_generation_service import HttpGenerationService
from storyteller.adapters.local_identity import LocalIdentityProvider
from storyteller.adapters.memory_record_store import InMemoryRecordStore
from storyteller.application.generation import (
    FAILED_STORY_TEXT,
    GenerationRequestController,
)
from storyteller.application.identity_session import IdentitySession
from storyteller.domain.errors import (
    GenerationServiceError,
    IdentityProviderError,
    RecordStoreError,
)
from storyteller.domain.models import GenerationRequest, SessionSettings, UserMessage
from storyteller.domain.ports import stories_collection_path

SCOPE = "app-1"


class _ScriptedService:
    """Generation double returning a fixed narrative, optionally behind a gate."""

    def __init__(
        self, narrative: str = "N", *, error: Exception | None = None, gate: asyncio.Event | None = None
    ) -> None:
        self.narrative = narrative
        self.error = error
        self.gate = gate
        self.requests: list[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> str:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.narrative


class _BrokenWritesStore(InMemoryRecordStore):
    async def create(self, collection_path: str, fields: Mapping[str, Any]) -> str:
        raise RecordStoreError("quota exceeded")


class _Harness:
    def __init__(self, service: Any, store: InMemoryRecordStore | None = None) -> None:
        self.provider = LocalIdentityProvider()
        self.identity = IdentitySession(self.provider, SessionSettings(scope_id=SCOPE))
        self.store = store or InMemoryRecordStore()
        self.service = service
        self.messages: list[UserMessage] = []
        self.loading_trace: list[bool] = []
        self.controller = GenerationRequestController(
            identity=self.identity,
            service=service,
            store=self.store,
            scope_id=SCOPE,
            on_change=lambda: self.loading_trace.append(self.controller.loading),
            on_message=self.messages.append,
        )

    def documents(self) -> list[Any]:
        owner = self.identity.subject_id
        assert owner is not None
        return self.store.documents(stories_collection_path(SCOPE, owner))


def _settled_false_count(trace: list[bool]) -> int:
    return sum(1 for before, after in zip(trace, trace[1:]) if before and not after)


def test_successful_generation_persists_record_and_clears_input() -> None:
    async def scenario() -> _Harness:
        harness = _Harness(_ScriptedService("A brave knight..."))
        await harness.identity.establish()
        harness.controller.set_keywords("brave knight, enchanted forest")
        result = await harness.controller.generate()
        assert result.outcome == "saved"
        assert result.record_id is not None
        return harness

    harness = asyncio.run(scenario())
    controller = harness.controller
    assert controller.state == "success"
    assert controller.loading is False
    assert controller.narrative == "A brave knight..."
    assert controller.keywords == ""
    assert harness.messages[-1] == UserMessage.info("Story generated! Please provide feedback.")
    request = harness.service.requests[0]
    assert request == GenerationRequest(
        keywords="brave knight, enchanted forest", owner=harness.identity.subject_id, scope_id=SCOPE
    )
    documents = harness.documents()
    assert [document.doc_id for document in documents] == [controller.last_record_id]
    fields = documents[0].fields
    assert fields["owner"] == harness.identity.subject_id
    assert fields["narrative"] == "A brave knight..."
    assert fields["feedback"] is None


def test_second_generate_while_loading_is_ignored() -> None:
    async def scenario() -> tuple[_Harness, list[str]]:
        gate = asyncio.Event()
        harness = _Harness(_ScriptedService("N", gate=gate))
        await harness.identity.establish()
        first = asyncio.create_task(harness.controller.generate("dragons"))
        await asyncio.sleep(0)
        assert harness.controller.loading is True
        second = await harness.controller.generate("more dragons")
        gate.set()
        first_result = await first
        return harness, [first_result.outcome, second.outcome]

    harness, outcomes = asyncio.run(scenario())
    assert outcomes == ["saved", "rejected_busy"]
    assert len(harness.service.requests) == 1
    assert harness.service.requests[0].keywords == "dragons"


@pytest.mark.parametrize(
    ("service", "store", "expected_outcome"),
    [
        (_ScriptedService("N"), InMemoryRecordStore(), "saved"),
        (_ScriptedService(error=GenerationServiceError("down")), InMemoryRecordStore(), "failed"),
        (_ScriptedService("N"), _BrokenWritesStore(), "unsaved"),
    ],
)
def test_loading_settles_exactly_once_for_every_outcome(
    service: _ScriptedService, store: InMemoryRecordStore, expected_outcome: str
) -> None:
    async def scenario() -> tuple[_Harness, str]:
        harness = _Harness(service, store)
        await harness.identity.establish()
        result = await harness.controller.generate("castle")
        return harness, result.outcome

    harness, outcome = asyncio.run(scenario())
    assert outcome == expected_outcome
    assert harness.loading_trace[0] is True
    assert harness.loading_trace[-1] is False
    assert _settled_false_count(harness.loading_trace) == 1
    assert harness.controller.loading is False


def test_persistence_failure_keeps_displayed_narrative() -> None:
    async def scenario() -> _Harness:
        harness = _Harness(_ScriptedService("N"), _BrokenWritesStore())
        await harness.identity.establish()
        await harness.controller.generate("lighthouse")
        return harness

    harness = asyncio.run(scenario())
    assert harness.controller.narrative == "N"
    assert harness.controller.last_record_id is None
    assert harness.controller.keywords == "lighthouse"
    assert harness.messages[-1].is_error is True
    assert harness.messages[-1].text == "Story generated but not saved: quota exceeded"


@pytest.mark.parametrize("keywords", ["", "   ", "\n\t"])
def test_blank_keywords_issue_no_remote_call(keywords: str) -> None:
    async def scenario() -> _Harness:
        harness = _Harness(_ScriptedService())
        await harness.identity.establish()
        result = await harness.controller.generate(keywords)
        assert result.outcome == "rejected_empty"
        return harness

    harness = asyncio.run(scenario())
    assert harness.service.requests == []
    assert harness.messages[-1] == UserMessage.error("Please enter some keywords for your story.")
    assert harness.controller.state == "idle"


def test_unauthenticated_session_issues_no_remote_call() -> None:
    class _NoSignIn(LocalIdentityProvider):
        async def exchange_token(self, token: str) -> str:
            raise IdentityProviderError("bad token")

        async def sign_in_anonymously(self) -> str:
            raise IdentityProviderError("disabled")

    async def scenario() -> tuple[GenerationRequestController, _ScriptedService, list[UserMessage]]:
        service = _ScriptedService()
        messages: list[UserMessage] = []
        identity = IdentitySession(_NoSignIn(), SessionSettings(scope_id=SCOPE, token="t"))
        controller = GenerationRequestController(
            identity=identity,
            service=service,
            store=InMemoryRecordStore(),
            scope_id=SCOPE,
            on_message=messages.append,
        )
        before = await controller.generate("early bird")
        assert before.outcome == "rejected_unauthenticated"
        await identity.establish()
        after = await controller.generate("still nobody")
        assert after.outcome == "rejected_unauthenticated"
        return controller, service, messages

    controller, service, messages = asyncio.run(scenario())
    assert service.requests == []
    assert messages[-1] == UserMessage.error("Not authenticated: sign-in has not completed.")
    assert controller.state == "idle"


def test_http_500_surfaces_status_and_body_without_store_write() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="internal error")

    service = HttpGenerationService(
        "https://functions.example.test/generate_story_function",
        transport=httpx.MockTransport(handler),
    )

    async def scenario() -> _Harness:
        harness = _Harness(service)
        await harness.identity.establish()
        result = await harness.controller.generate("robots")
        assert result.outcome == "failed"
        return harness

    harness = asyncio.run(scenario())
    message = harness.messages[-1]
    assert message.is_error is True
    assert "500" in message.text
    assert "internal error" in message.text
    assert harness.controller.state == "error"
    assert harness.controller.narrative == FAILED_STORY_TEXT
    assert harness.controller.last_record_id is None
    assert harness.controller.keywords == "robots"
    assert harness.documents() == []


def test_result_is_discarded_when_identity_changes_mid_flight() -> None:
    async def scenario() -> tuple[_Harness, str, str | None]:
        gate = asyncio.Event()
        harness = _Harness(_ScriptedService("N", gate=gate))
        original = await harness.identity.establish()
        assert original is not None
        task = asyncio.create_task(harness.controller.generate("pirates"))
        await asyncio.sleep(0)
        await harness.provider.sign_out()
        gate.set()
        result = await task
        return harness, result.outcome, original

    harness, outcome, original = asyncio.run(scenario())
    assert outcome == "discarded"
    assert harness.controller.narrative == ""
    assert harness.controller.last_record_id is None
    assert harness.controller.loading is False
    assert harness.store.documents(stories_collection_path(SCOPE, original)) == []


def test_unexpected_service_exception_propagates_and_settles_state() -> None:
    async def scenario() -> _Harness:
        harness = _Harness(_ScriptedService(error=ValueError("bug in service")))
        await harness.identity.establish()
        with pytest.raises(ValueError, match="bug in service"):
            await harness.controller.generate("castle")
        return harness

    harness = asyncio.run(scenario())
    assert harness.controller.loading is False
    assert harness.controller.state != "loading"
    assert harness.loading_trace[-1] is False
    assert _settled_false_count(harness.loading_trace) == 1


def test_long_keywords_reach_http_backend() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.content.decode("utf-8"))
        return httpx.Response(200, json={"story": "A very long tale."})

    service = HttpGenerationService(
        "https://functions.example.test/generate_story_function",
        transport=httpx.MockTransport(handler),
    )

    async def scenario() -> tuple[_Harness, str]:
        harness = _Harness(service)
        await harness.identity.establish()
        result = await harness.controller.generate("dragon " * 700)
        return harness, result.outcome

    harness, outcome = asyncio.run(scenario())
    assert outcome == "saved"
    assert len(seen) == 1
    assert harness.controller.state == "success"
    assert harness.controller.narrative == "A very long tale."


def test_failed_save_is_discarded_when_identity_changes_mid_write() -> None:
    gate = asyncio.Event()

    class _GatedFailingStore(InMemoryRecordStore):
        async def create(self, collection_path: str, fields: Mapping[str, Any]) -> str:
            await gate.wait()
            raise RecordStoreError("write rejected")

    async def scenario() -> tuple[_Harness, str]:
        harness = _Harness(_ScriptedService("N"), _GatedFailingStore())
        await harness.identity.establish()
        task = asyncio.create_task(harness.controller.generate("pirates"))
        for _ in range(5):
            await asyncio.sleep(0)
        assert harness.controller.narrative == "N"
        await harness.provider.sign_out()
        gate.set()
        result = await task
        return harness, result.outcome

    harness, outcome = asyncio.run(scenario())
    assert outcome == "discarded"
    assert harness.controller.narrative == ""
    assert harness.controller.state == "idle"
    assert harness.controller.loading is False
    assert all("not saved" not in message.text for message in harness.messages)
