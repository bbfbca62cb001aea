"""Helpers for the raw (JSON) form of the document model."""

from typing import Any


def compact(values: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None."""
    return {key: value for key, value in values.items() if value is not None}


def canonicalize(raw: Any) -> Any:
    """Return a copy with dict keys sorted and layer lists ordered by index.

    Two raw descriptions of the same document compare equal after this.
    """
    if isinstance(raw, list):
        return [canonicalize(item) for item in raw]
    if not isinstance(raw, dict):
        return raw
    result: dict[str, Any] = {}
    for key in sorted(raw):
        value = canonicalize(raw[key])
        if key == "layers" and isinstance(value, list):
            value = sorted(value, key=lambda layer: layer.get("index", 0), reverse=True)
        result[key] = value
    return result
