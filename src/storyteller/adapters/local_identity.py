"""Identity provider that keeps the signed-in subject in a local session file."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from storyteller.domain.errors import IdentityProviderError
from storyteller.domain.ports import IdentityListener, Unsubscribe

logger = logging.getLogger(__name__)

TokenVerifier = Callable[[str], str]


class LocalIdentityProvider:
    """Resume, token-exchange, and anonymous sign-in for a single local user.

    With `session_path=None` the signed-in subject only lives as long as
    the provider object.
    """

    def __init__(
        self,
        *,
        session_path: Path | None = None,
        token_verifier: TokenVerifier | None = None,
    ) -> None:
        self._session_path = session_path
        self._token_verifier = token_verifier
        self._subject: str | None = None
        self._listeners: list[IdentityListener] = []

    @property
    def current_subject(self) -> str | None:
        return self._subject

    def on_change(self, listener: IdentityListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def resume(self) -> str | None:
        if self._subject is not None:
            return self._subject
        if self._session_path is None or not self._session_path.exists():
            return None
        try:
            payload = json.loads(self._session_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise IdentityProviderError(f"Unreadable session file: {exc}") from exc
        subject = payload.get("subject") if isinstance(payload, dict) else None
        if not isinstance(subject, str) or not subject.strip():
            logger.warning("identity.session_file_invalid path=%s", self._session_path)
            return None
        self._subject = subject
        return subject

    async def sign_in_anonymously(self) -> str:
        subject = uuid4().hex
        self._adopt(subject, method="anonymous")
        return subject

    async def exchange_token(self, token: str) -> str:
        if self._token_verifier is None:
            raise IdentityProviderError("Token exchange is not configured.")
        subject = await asyncio.to_thread(self._token_verifier, token)
        self._adopt(subject, method="token")
        return subject

    async def sign_out(self) -> None:
        if self._session_path is not None:
            try:
                self._session_path.unlink(missing_ok=True)
            except OSError as exc:
                raise IdentityProviderError(f"Could not clear session file: {exc}") from exc
        if self._subject is not None:
            self._subject = None
            self._notify()

    def _adopt(self, subject: str, *, method: str) -> None:
        if self._session_path is not None:
            payload = {
                "subject": subject,
                "method": method,
                "signed_in_at_utc": datetime.now(UTC).isoformat(),
            }
            try:
                self._session_path.parent.mkdir(parents=True, exist_ok=True)
                self._session_path.write_text(json.dumps(payload), encoding="utf-8")
            except OSError as exc:
                raise IdentityProviderError(f"Could not write session file: {exc}") from exc
        self._subject = subject
        logger.info("identity.signed_in method=%s subject=%s", method, subject)
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._subject)
