"""Small helpers shared by the service, MCP and export layers."""
from __future__ import annotations

import json
from typing import Any, Iterable, Mapping

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Parse a stored JSON column, returning *default* (``{}`` if omitted) on failure."""
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def normalize_duration(value: float | int | str | None) -> str | None:
    """Hours as their shortest decimal text (``2.0 -> "2"``); free text is kept as typed."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return f"{value:g}"
    value = value.strip()
    return value or None


def missing_fields(data: Mapping[str, Any], required: Iterable[str]) -> list[str]:
    def blank(value: Any) -> bool:
        if isinstance(value, str):
            return not value.strip()
        return value is None or value is False

    return [f for f in required if blank(data.get(f))]


def as_bool(value: object) -> bool:
    """Coerce form values such as ``"true"`` / ``"on"`` / ``1`` to bool."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("true", "1", "yes", "on")
