"""Shared validation helpers for service settings."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic_settings import EnvSettingsSource

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo

SQLITE_IN_MEMORY = ":memory:"


def parse_string_list(value: str | list[str], *, allow_empty: bool = False) -> list[str]:
    """Parse a string list from an environment variable or config value.

    Accepts a list of strings, a JSON array string ('["a","b"]') or a
    comma-separated string ('a, b'). Items are stripped and duplicates dropped,
    keeping first occurrence order.

    Raises ValueError for malformed JSON, non-string items, and (unless
    allow_empty) for an empty result.
    """
    if isinstance(value, list):
        items = value
    else:
        stripped = value.strip()
        if stripped.startswith("["):
            try:
                items = json.loads(stripped)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON array: {e}") from e
            if not isinstance(items, list):
                raise ValueError("JSON value must be an array of strings")
        else:
            items = stripped.split(",")

    if not all(isinstance(item, str) for item in items):
        raise ValueError("String list items must be strings")

    result = list(dict.fromkeys(item.strip() for item in items if item.strip()))
    if not allow_empty and not result:
        raise ValueError("String list value must not be empty")
    return result


def validate_database_path(value: str) -> str:
    """Accept SQLite's in-memory marker or a file path that does not name a directory."""
    stripped = value.strip()
    if not stripped:
        raise ValueError("Database path must not be empty")
    if stripped != SQLITE_IN_MEMORY and stripped.endswith(("/", "\\")):
        raise ValueError(f"Database path must name a file, got {stripped!r}")
    return stripped


_STRING_LIST_FIELDS = {"cors_origins"}


class StringListEnvSettingsSource(EnvSettingsSource):
    """Env settings source that passes string-list fields as raw strings to validators.

    pydantic-settings JSON-decodes list-typed fields read from env vars before
    validators run, which rejects the CSV form. String-list fields skip that
    step so parse_string_list handles both JSON and CSV.
    """

    def prepare_field_value(
        self,
        field_name: str,
        field: FieldInfo,
        value: Any,  # noqa: ANN401
        value_is_complex: bool,  # noqa: FBT001
    ) -> Any:  # noqa: ANN401
        if field_name in _STRING_LIST_FIELDS and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)
