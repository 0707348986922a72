from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from storyteller.adapters.local_identity import LocalIdentityProvider
from storyteller.adapters.oidc import OidcTokenVerifier
from storyteller.config import OidcSettings
from storyteller.domain.errors import IdentityProviderError

ISSUER = "https://id.example.test/realms/story"
AUDIENCE = "storyteller"


def _token_and_jwks(*, subject: str, audience: str = AUDIENCE) -> tuple[str, dict[str, Any]]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    jwk = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(key.public_key()))
    jwk["kid"] = "test-kid"
    token = jwt.encode(
        {"iss": ISSUER, "aud": audience, "sub": subject},
        key,
        algorithm="RS256",
        headers={"kid": "test-kid"},
    )
    return token, {"keys": [jwk]}


def test_anonymous_sign_in_persists_and_resumes(tmp_path: Path) -> None:
    session_path = tmp_path / "auth" / "session.json"

    async def scenario() -> tuple[str, str | None]:
        subject = await LocalIdentityProvider(session_path=session_path).sign_in_anonymously()
        resumed = await LocalIdentityProvider(session_path=session_path).resume()
        return subject, resumed

    subject, resumed = asyncio.run(scenario())
    assert resumed == subject
    payload = json.loads(session_path.read_text(encoding="utf-8"))
    assert payload["method"] == "anonymous"


def test_sign_out_clears_session_and_notifies(tmp_path: Path) -> None:
    session_path = tmp_path / "session.json"
    provider = LocalIdentityProvider(session_path=session_path)
    seen: list[str | None] = []
    unsubscribe = provider.on_change(seen.append)

    async def scenario() -> str | None:
        subject = await provider.sign_in_anonymously()
        await provider.sign_out()
        unsubscribe()
        await provider.sign_in_anonymously()
        return subject

    subject = asyncio.run(scenario())
    assert seen == [subject, None]
    assert provider.current_subject is not None


def test_corrupt_session_file_raises_provider_error(tmp_path: Path) -> None:
    session_path = tmp_path / "session.json"
    session_path.write_text("{not json", encoding="utf-8")
    with pytest.raises(IdentityProviderError, match="Unreadable session file"):
        asyncio.run(LocalIdentityProvider(session_path=session_path).resume())


def test_token_exchange_without_verifier_fails() -> None:
    with pytest.raises(IdentityProviderError, match="not configured"):
        asyncio.run(LocalIdentityProvider().exchange_token("token"))


def test_token_exchange_adopts_verified_subject() -> None:
    token, jwks = _token_and_jwks(subject="user-oidc-1")
    verifier = OidcTokenVerifier(
        OidcSettings(issuer=ISSUER, audience=AUDIENCE, jwks_json=json.dumps(jwks))
    )
    provider = LocalIdentityProvider(token_verifier=verifier)
    assert asyncio.run(provider.exchange_token(token)) == "user-oidc-1"
    assert provider.current_subject == "user-oidc-1"


def test_verifier_rejects_wrong_audience() -> None:
    token, jwks = _token_and_jwks(subject="user-oidc-1", audience="someone-else")
    verifier = OidcTokenVerifier(
        OidcSettings(issuer=ISSUER, audience=AUDIENCE, jwks_json=json.dumps(jwks))
    )
    with pytest.raises(IdentityProviderError, match="Token rejected"):
        verifier.verify(token)


def test_verifier_discovers_jwks_through_well_known_document() -> None:
    token, jwks = _token_and_jwks(subject="user-oidc-2")
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        if request.url.path.endswith("/.well-known/openid-configuration"):
            return httpx.Response(200, json={"jwks_uri": "https://id.example.test/certs"})
        return httpx.Response(200, json=jwks)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    verifier = OidcTokenVerifier(OidcSettings(issuer=ISSUER, audience=AUDIENCE), http_client=client)

    assert verifier(token) == "user-oidc-2"
    assert verifier(token) == "user-oidc-2"
    assert requested == [
        f"{ISSUER}/.well-known/openid-configuration",
        "https://id.example.test/certs",
    ]


def test_verifier_reports_missing_signing_key() -> None:
    token, _ = _token_and_jwks(subject="user-oidc-3")
    _, other_jwks = _token_and_jwks(subject="unused")
    other_jwks["keys"][0]["kid"] = "other-kid"
    verifier = OidcTokenVerifier(
        OidcSettings(issuer=ISSUER, jwks_json=json.dumps(other_jwks))
    )
    with pytest.raises(IdentityProviderError, match="did not contain signing key"):
        verifier.verify(token)
