"""Validation helpers for list-valued server settings."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic_settings import EnvSettingsSource

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo


def _split_list(value: str) -> list[Any]:
    """Split a JSON array or comma-separated string into raw items."""
    stripped = value.strip()
    if not stripped:
        raise ValueError("List value must not be empty")
    if stripped.startswith("["):
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON array: {e}") from e
        if not isinstance(parsed, list):
            raise ValueError("JSON value must be an array")
        return parsed
    return [item.strip() for item in stripped.split(",") if item.strip()]


def parse_string_list(value: str | list[str], *, allow_empty: bool = False) -> list[str]:
    """Parse a list of strings from an env var (JSON array or CSV) or a list.

    Raises ValueError for blank strings, malformed JSON and non-string items.
    Empty results are rejected unless allow_empty is set.
    """
    if isinstance(value, list):
        items: list[Any] = value
    elif not value.strip() and allow_empty:
        items = []
    else:
        items = _split_list(value)

    if not all(isinstance(item, str) for item in items):
        raise ValueError("List value must contain only strings")
    if not allow_empty and not items:
        raise ValueError("List value must not be empty")
    return items


def parse_int_list(value: str | list[int]) -> list[int]:
    """Parse a non-empty list of positive integers (e.g. allowed round counts)."""
    items = value if isinstance(value, list) else _split_list(value)
    try:
        result = [int(item) for item in items]
    except (TypeError, ValueError) as e:
        raise ValueError(f"List value must contain only integers: {e}") from e
    if not result:
        raise ValueError("List value must not be empty")
    if any(item <= 0 for item in result):
        raise ValueError("List values must be positive")
    return result


_LIST_FIELDS = {"cors_origins", "round_options"}


class ListEnvSettingsSource(EnvSettingsSource):
    """Env settings source that hands list fields to validators as raw strings.

    pydantic-settings JSON-decodes list-typed fields before validators run,
    which rejects the CSV form. List fields bypass that step here so the
    field validators accept both forms.
    """

    def prepare_field_value(
        self,
        field_name: str,
        field: FieldInfo,
        value: Any,  # noqa: ANN401
        value_is_complex: bool,  # noqa: FBT001
    ) -> Any:  # noqa: ANN401
        if field_name in _LIST_FIELDS and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)
