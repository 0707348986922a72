"""OpenID Connect verification for pre-supplied sign-in tokens."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, cast

import httpx
import jwt
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from storyteller.config import OidcSettings
from storyteller.domain.errors import IdentityProviderError


@dataclass(frozen=True)
class OidcClaims:
    """Verified claims adopted as the session identity."""

    subject: str
    issuer: str
    audience: str | None


@dataclass
class _OidcCache:
    value: dict[str, Any] | None = None
    expires_at: float = 0.0


class OidcTokenVerifier:
    """Verify RS256-style JWTs against an issuer's published key set."""

    def __init__(self, settings: OidcSettings, *, http_client: httpx.Client | None = None) -> None:
        self._settings = settings
        self._http_client = http_client
        self._jwks_cache = _OidcCache()
        self._well_known_cache = _OidcCache()

    def __call__(self, token: str) -> str:
        return self.verify(token).subject

    def _get_json(self, url: str) -> dict[str, Any]:
        if self._http_client is not None:
            response = self._http_client.get(url)
            response.raise_for_status()
            payload = response.json()
        else:
            with httpx.Client(timeout=10.0, follow_redirects=True) as client:
                response = client.get(url)
                response.raise_for_status()
                payload = response.json()
        if not isinstance(payload, dict):
            raise IdentityProviderError(f"OIDC response from {url} was not an object.")
        return payload

    def _fetch_well_known(self) -> dict[str, Any]:
        now = time.monotonic()
        cache = self._well_known_cache
        if cache.value is not None and cache.expires_at > now:
            return cache.value
        url = self._settings.issuer.rstrip("/") + "/.well-known/openid-configuration"
        payload = self._get_json(url)
        cache.value = payload
        cache.expires_at = now + self._settings.cache_ttl_seconds
        return payload

    def _resolve_jwks_url(self) -> str:
        if self._settings.jwks_url:
            return self._settings.jwks_url
        jwks_uri = self._fetch_well_known().get("jwks_uri")
        if isinstance(jwks_uri, str) and jwks_uri:
            return jwks_uri
        raise IdentityProviderError("OIDC well-known config missing jwks_uri.")

    def _fetch_jwks(self) -> dict[str, Any]:
        if self._settings.jwks_json:
            payload = json.loads(self._settings.jwks_json)
            if not isinstance(payload, dict):
                raise IdentityProviderError("OIDC JWKS JSON must be an object.")
            return payload
        now = time.monotonic()
        cache = self._jwks_cache
        if cache.value is not None and cache.expires_at > now:
            return cache.value
        payload = self._get_json(self._resolve_jwks_url())
        cache.value = payload
        cache.expires_at = now + self._settings.cache_ttl_seconds
        return payload

    @staticmethod
    def _select_jwk(jwks: dict[str, Any], kid: str | None) -> dict[str, Any]:
        keys = jwks.get("keys")
        if not isinstance(keys, list):
            raise IdentityProviderError("OIDC JWKS payload missing keys list.")
        if kid is None:
            if len(keys) == 1 and isinstance(keys[0], dict):
                return keys[0]
            raise IdentityProviderError("OIDC token header missing kid and JWKS has multiple keys.")
        for key in keys:
            if isinstance(key, dict) and key.get("kid") == kid:
                return key
        raise IdentityProviderError("OIDC JWKS did not contain signing key for token kid.")

    def verify(self, token: str) -> OidcClaims:
        """Validate `token` and return its subject claim."""
        settings = self._settings
        try:
            header = jwt.get_unverified_header(token)
            kid = header.get("kid") if isinstance(header, dict) else None
            jwk = self._select_jwk(self._fetch_jwks(), kid)
            public_key = cast(RSAPublicKey, jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk)))
            options: dict[str, bool] = {"verify_aud": bool(settings.audience)}
            payload = jwt.decode(
                token,
                key=public_key,
                algorithms=list(settings.algorithms),
                audience=settings.audience or None,
                issuer=settings.issuer,
                options=cast(Any, options),
            )
        except jwt.PyJWTError as exc:
            raise IdentityProviderError(f"Token rejected: {exc}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise IdentityProviderError(f"OIDC key lookup failed: {exc}") from exc
        if not isinstance(payload, dict):
            raise IdentityProviderError("OIDC token payload was not an object.")
        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject.strip():
            raise IdentityProviderError("OIDC token missing subject.")
        return OidcClaims(
            subject=subject,
            issuer=settings.issuer,
            audience=settings.audience or None,
        )
