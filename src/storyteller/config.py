"""Runtime configuration for storyteller sessions."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, ValidationError

from storyteller.api.contracts import ContractModel
from storyteller.domain.models import SessionSettings

DEFAULT_GENERATION_URL = "http://127.0.0.1:8080/generate_story_function"
DEFAULT_DB_PATH = Path("work/local/storyteller.db")
DEFAULT_SESSION_PATH = Path("work/local/session.json")
DEFAULT_LOG_PATH = Path("work/logs/storyteller.log")
LogLevelName = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or invalid."""


class OidcSettings(ContractModel):
    """Issuer settings used to verify pre-supplied sign-in tokens."""

    issuer: str = Field(min_length=1)
    audience: str | None = None
    algorithms: tuple[str, ...] = ("RS256",)
    jwks_url: str | None = None
    jwks_json: str | None = None
    cache_ttl_seconds: int = Field(default=300, ge=30, le=3600)


class LogSettings(ContractModel):
    """Console and rotating-file logging for one process."""

    level: LogLevelName = "WARNING"
    path: Path = DEFAULT_LOG_PATH
    max_bytes: int = Field(default=2 * 1024 * 1024, ge=64 * 1024, le=100 * 1024 * 1024)
    backup_count: int = Field(default=5, ge=1, le=120)
    http_level: LogLevelName = "WARNING"


class StorytellerConfig(ContractModel):
    """Explicit configuration passed into every session component."""

    scope_id: str = Field(min_length=1, max_length=200)
    token: SecretStr | None = None
    generation_backend: Literal["http", "simulated"] = "http"
    generation_url: str = DEFAULT_GENERATION_URL
    generation_timeout_seconds: float = Field(default=60.0, ge=1.0, le=600.0)
    simulated_delay_seconds: float = Field(default=1.5, ge=0.0, le=60.0)
    store_backend: Literal["sqlite", "memory"] = "sqlite"
    db_path: Path = DEFAULT_DB_PATH
    session_path: Path | None = DEFAULT_SESSION_PATH
    oidc: OidcSettings | None = None
    log: LogSettings = Field(default_factory=LogSettings)

    @property
    def token_value(self) -> str | None:
        if self.token is None:
            return None
        value = self.token.get_secret_value().strip()
        return value or None

    def session_settings(self) -> SessionSettings:
        return SessionSettings(scope_id=self.scope_id, token=self.token_value)


def _env(environ: Mapping[str, str], name: str, default: str = "") -> str:
    return str(environ.get(name, default)).strip()


def _int_env(
    environ: Mapping[str, str], name: str, default: int, *, minimum: int, maximum: int
) -> int:
    raw = _env(environ, name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _float_env(
    environ: Mapping[str, str], name: str, default: float, *, minimum: float, maximum: float
) -> float:
    raw = _env(environ, name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _load_oidc(environ: Mapping[str, str]) -> OidcSettings | None:
    issuer = _env(environ, "STORYTELLER_OIDC_ISSUER")
    if not issuer:
        return None
    algorithms = [
        algo.strip()
        for algo in _env(environ, "STORYTELLER_OIDC_ALGORITHMS", "RS256").split(",")
        if algo.strip()
    ]
    return OidcSettings(
        issuer=issuer,
        audience=_env(environ, "STORYTELLER_OIDC_AUDIENCE") or None,
        algorithms=tuple(algorithms or ["RS256"]),
        jwks_url=_env(environ, "STORYTELLER_OIDC_JWKS_URL") or None,
        jwks_json=_env(environ, "STORYTELLER_OIDC_JWKS_JSON") or None,
        cache_ttl_seconds=_int_env(
            environ, "STORYTELLER_OIDC_JWKS_TTL_SECONDS", 300, minimum=30, maximum=3600
        ),
    )


def _level_env(environ: Mapping[str, str], name: str) -> str:
    level = _env(environ, name).upper()
    return level if level in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "WARNING"


def load_log_settings(environ: Mapping[str, str] | None = None) -> LogSettings:
    """Logging settings only; usable before the rest of the config validates."""
    env = os.environ if environ is None else environ
    return LogSettings(
        level=_level_env(env, "STORYTELLER_LOG_LEVEL"),
        path=Path(_env(env, "STORYTELLER_LOG_PATH") or DEFAULT_LOG_PATH),
        max_bytes=_int_env(
            env,
            "STORYTELLER_LOG_MAX_BYTES",
            2 * 1024 * 1024,
            minimum=64 * 1024,
            maximum=100 * 1024 * 1024,
        ),
        backup_count=_int_env(env, "STORYTELLER_LOG_BACKUP_COUNT", 5, minimum=1, maximum=120),
        http_level=_level_env(env, "STORYTELLER_HTTP_LOG_LEVEL"),
    )


def load_config(environ: Mapping[str, str] | None = None) -> StorytellerConfig:
    """Build configuration from `STORYTELLER_*` environment variables."""
    env = os.environ if environ is None else environ
    scope_id = _env(env, "STORYTELLER_SCOPE_ID")
    if not scope_id:
        raise ConfigError("STORYTELLER_SCOPE_ID is required.")
    session_path_raw = _env(env, "STORYTELLER_SESSION_PATH", str(DEFAULT_SESSION_PATH))
    try:
        return StorytellerConfig(
            scope_id=scope_id,
            token=_env(env, "STORYTELLER_AUTH_TOKEN") or None,
            generation_backend=_env(env, "STORYTELLER_GENERATION_BACKEND", "http").lower()
            or "http",
            generation_url=_env(env, "STORYTELLER_GENERATION_URL", DEFAULT_GENERATION_URL)
            or DEFAULT_GENERATION_URL,
            generation_timeout_seconds=_float_env(
                env, "STORYTELLER_GENERATION_TIMEOUT_SECONDS", 60.0, minimum=1.0, maximum=600.0
            ),
            simulated_delay_seconds=_float_env(
                env, "STORYTELLER_SIMULATED_DELAY_SECONDS", 1.5, minimum=0.0, maximum=60.0
            ),
            store_backend=_env(env, "STORYTELLER_STORE_BACKEND", "sqlite").lower() or "sqlite",
            db_path=Path(_env(env, "STORYTELLER_DB_PATH") or DEFAULT_DB_PATH),
            session_path=Path(session_path_raw) if session_path_raw else None,
            oidc=_load_oidc(env),
            log=load_log_settings(env),
        )
    except ValidationError as exc:
        raise ConfigError(f"Invalid storyteller configuration: {exc}") from exc
