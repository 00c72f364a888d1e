"""Utility helpers for the AniFeed service."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(moment: datetime | None = None) -> str:
    """Return an ISO-8601 UTC timestamp such as ``2025-11-11T09:30:00Z``."""

    moment = moment or utc_now()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc).replace(microsecond=0)
    return moment.isoformat().replace("+00:00", "Z")


def int_mapping(data: Any) -> dict[int, int]:
    """Parse a JSON object with integer-like keys and integer values.

    Keys that are not integers are skipped; a non-integer value makes the
    whole mapping invalid.
    """

    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    parsed: dict[int, int] = {}
    for key, value in data.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Expected an integer value for key {key!r}")
        try:
            parsed[int(key)] = value
        except (TypeError, ValueError):
            continue
    return parsed


def int_list(data: Any) -> list[int]:
    """Parse a JSON array that must contain only integers."""

    if not isinstance(data, list):
        raise ValueError("Expected a JSON array")
    if any(isinstance(item, bool) or not isinstance(item, int) for item in data):
        raise ValueError("Expected only integers")
    return list(data)


def casefold_contains(haystack: str, needle: str) -> bool:
    return needle.casefold() in (haystack or "").casefold()


def any_casefold_contains(values: Iterable[str], needle: str) -> bool:
    return any(casefold_contains(value, needle) for value in values)
