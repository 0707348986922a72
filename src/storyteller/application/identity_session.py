"""Identity establishment and readiness for one storyteller session."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from storyteller.domain.errors import IdentityProviderError
from storyteller.domain.models import SessionSettings, UserMessage
from storyteller.domain.ports import IdentityProvider, Unsubscribe

logger = logging.getLogger(__name__)

SubjectListener = Callable[[str | None], None]


def _noop_message(message: UserMessage) -> None:
    del message


class IdentitySession:
    """Resolve the session subject once and publish readiness.

    Resolution order is resume, then token exchange when a token was
    supplied, then anonymous sign-in. Readiness is published even when
    every step fails so the presentation never waits forever; in that
    case `subject_id` stays None.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        settings: SessionSettings,
        *,
        on_message: Callable[[UserMessage], None] = _noop_message,
    ) -> None:
        self._provider = provider
        self._token = settings.token
        self._on_message = on_message
        self._subject_id: str | None = None
        self._ready = asyncio.Event()
        self._task: asyncio.Task[str | None] | None = None
        self._listeners: list[SubjectListener] = []
        self._provider_unsubscribe: Unsubscribe | None = None

    @property
    def subject_id(self) -> str | None:
        return self._subject_id

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    @property
    def authenticated(self) -> bool:
        return self.ready and self._subject_id is not None

    def add_listener(self, listener: SubjectListener) -> Unsubscribe:
        """Call `listener` whenever the subject changes after readiness."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def wait_ready(self) -> str | None:
        await self._ready.wait()
        return self._subject_id

    async def establish(self) -> str | None:
        """Start identity resolution, or join the resolution already running."""
        if self._task is None:
            if self._provider_unsubscribe is None:
                self._provider_unsubscribe = self._provider.on_change(self._handle_provider_change)
            self._task = asyncio.get_running_loop().create_task(self._resolve())
        return await asyncio.shield(self._task)

    async def sign_out(self) -> None:
        """End the session identity and allow a later `establish()`."""
        if self._task is not None and not self._task.done():
            await asyncio.shield(self._task)
        try:
            await self._provider.sign_out()
        except IdentityProviderError as exc:
            logger.warning("identity.sign_out_failed error=%s", exc)
            self._on_message(UserMessage.error(f"Sign-out error: {exc}"))
        self._task = None
        self._ready.clear()
        self._set_subject(None)
        self._on_message(UserMessage.info("Signed out."))

    def close(self) -> None:
        if self._provider_unsubscribe is not None:
            self._provider_unsubscribe()
            self._provider_unsubscribe = None
        self._listeners.clear()

    async def _resolve(self) -> str | None:
        subject: str | None = None
        try:
            subject = await self._try_resume()
            if subject is not None:
                self._on_message(UserMessage.info(f"Signed in as: {subject}"))
                return subject
            if self._token:
                subject = await self._try_token_exchange(self._token)
                if subject is not None:
                    self._on_message(UserMessage.info("Signed in with custom token."))
                    return subject
            try:
                subject = await self._provider.sign_in_anonymously()
            except IdentityProviderError as exc:
                logger.warning("identity.anonymous_failed error=%s", exc)
                self._on_message(UserMessage.error(f"Sign-in error: {exc}"))
                return None
            self._on_message(UserMessage.info("Signed in anonymously."))
            return subject
        finally:
            self._subject_id = subject
            self._ready.set()
            logger.info("identity.ready subject=%s", subject or "-")
            self._notify()

    async def _try_resume(self) -> str | None:
        try:
            return await self._provider.resume()
        except IdentityProviderError as exc:
            logger.warning("identity.resume_failed error=%s", exc)
            return None

    async def _try_token_exchange(self, token: str) -> str | None:
        try:
            return await self._provider.exchange_token(token)
        except IdentityProviderError as exc:
            logger.warning("identity.token_exchange_failed error=%s", exc)
            return None

    def _handle_provider_change(self, subject: str | None) -> None:
        # Transitions during resolution are settled by _resolve itself.
        if not self.ready:
            return
        if subject is None and self._subject_id is not None:
            logger.info("identity.provider_signed_out subject=%s", self._subject_id)
            self._set_subject(None)
        elif subject is not None and subject != self._subject_id:
            logger.info("identity.provider_switched subject=%s", subject)
            self._set_subject(subject)

    def _set_subject(self, subject: str | None) -> None:
        if subject == self._subject_id:
            return
        self._subject_id = subject
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._subject_id)
