"""Recursive clean-up of decoded JSON for display."""

from __future__ import annotations

from typing import Any

_MISSING = object()


def compact(value: Any) -> Any:
    """Return ``value`` without ``None``, ``""``, ``[]`` or ``{}`` entries.

    Dicts and lists are cleaned recursively and dropped from their parent
    when nothing is left in them.  ``False`` and ``0`` are kept.  A value
    that is itself empty compacts to ``None``.
    """
    result = _compact(value)
    return None if result is _MISSING else result


def _compact(value: Any) -> Any:
    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            item = _compact(item)
            if item is not _MISSING:
                cleaned[key] = item
        return cleaned or _MISSING
    if isinstance(value, list):
        cleaned_list = [item for item in map(_compact, value) if item is not _MISSING]
        return cleaned_list or _MISSING
    if value is None or value == "":
        return _MISSING
    return value
