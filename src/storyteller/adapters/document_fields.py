"""Helpers shared by record store adapters for document field handling."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from storyteller.domain.ports import SERVER_TIMESTAMP


def copy_fields(value: Any) -> Any:
    """Copy nested dict/list field values so stored documents never alias caller data."""
    if isinstance(value, Mapping):
        return {str(key): copy_fields(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [copy_fields(item) for item in value]
    return value


def has_server_timestamp(value: Any) -> bool:
    if value is SERVER_TIMESTAMP:
        return True
    if isinstance(value, Mapping):
        return any(has_server_timestamp(item) for item in value.values())
    if isinstance(value, list):
        return any(has_server_timestamp(item) for item in value)
    return False


def resolve_server_timestamps(value: Any, now: datetime) -> Any:
    """Replace every server timestamp placeholder with `now`."""
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, Mapping):
        return {key: resolve_server_timestamps(item, now) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_server_timestamps(item, now) for item in value]
    return value


def mask_server_timestamps(value: Any) -> Any:
    """Show unresolved server timestamps as None, the way pending writes are read back."""
    if value is SERVER_TIMESTAMP:
        return None
    if isinstance(value, Mapping):
        return {key: mask_server_timestamps(item) for key, item in value.items()}
    if isinstance(value, list):
        return [mask_server_timestamps(item) for item in value]
    return value


def merge_fields(existing: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Top-level merge: each patched field replaces the stored field whole."""
    merged = dict(existing)
    for key, value in patch.items():
        merged[str(key)] = copy_fields(value)
    return merged


def to_json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {key: to_json_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [to_json_value(item) for item in value]
    return value
