"""Build configured collaborators for a storyteller session."""

from __future__ import annotations

from storyteller.adapters.http_generation_service import HttpGenerationService
from storyteller.adapters.local_identity import LocalIdentityProvider
from storyteller.adapters.memory_record_store import InMemoryRecordStore
from storyteller.adapters.oidc import OidcTokenVerifier
from storyteller.adapters.simulated_generation_service import SimulatedGenerationService
from storyteller.adapters.sqlite_record_store import SQLiteRecordStore
from storyteller.config import StorytellerConfig
from storyteller.domain.ports import GenerationService, IdentityProvider, RecordStore


def create_identity_provider(config: StorytellerConfig) -> IdentityProvider:
    """Local identity provider; token exchange is enabled only with OIDC settings."""
    verifier = OidcTokenVerifier(config.oidc) if config.oidc is not None else None
    return LocalIdentityProvider(session_path=config.session_path, token_verifier=verifier)


def create_generation_service(config: StorytellerConfig) -> GenerationService:
    backend = config.generation_backend
    if backend == "http":
        return HttpGenerationService(
            config.generation_url, timeout_seconds=config.generation_timeout_seconds
        )
    if backend == "simulated":
        return SimulatedGenerationService(delay_seconds=config.simulated_delay_seconds)
    raise RuntimeError(
        "Unsupported STORYTELLER_GENERATION_BACKEND value. Expected http or simulated."
    )


def create_record_store(config: StorytellerConfig) -> RecordStore:
    """Must be called from inside the event loop that will own the store."""
    backend = config.store_backend
    if backend == "sqlite":
        return SQLiteRecordStore(db_path=config.db_path)
    if backend == "memory":
        return InMemoryRecordStore()
    raise RuntimeError(
        "Unsupported STORYTELLER_STORE_BACKEND value. Expected sqlite or memory."
    )
