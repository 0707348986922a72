"""Errors raised at collaborator boundaries."""

from __future__ import annotations


class CollaboratorError(RuntimeError):
    """Base error for identity, generation, and record store failures."""


class IdentityProviderError(CollaboratorError):
    """Raised when the identity provider cannot resume or issue an identity."""


class GenerationServiceError(CollaboratorError):
    """Raised when the remote generation call fails or returns a bad payload."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RecordStoreError(CollaboratorError):
    """Raised when the record store rejects a read or write."""
