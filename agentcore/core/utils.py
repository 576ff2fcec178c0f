"""Utility functions for agentcore."""

from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dicts. Override values take precedence.

    Merge rules:
    - Dicts are recursively merged
    - Lists are REPLACED (override wins completely)
    - Other values are overwritten

    Args:
        base: Base dictionary.
        override: Dictionary with values to overlay.

    Returns:
        New merged dictionary (original dicts not modified).
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def model_names_match(requested: str, available: str) -> bool:
    """Check whether two model names refer to the same model.

    Matches exact names and name-with-tag prefixes in either direction, so
    ``llama3`` matches ``llama3:8b`` and ``llama3:latest`` matches ``llama3``.
    """
    return (
        requested == available
        or available.startswith(f"{requested}:")
        or requested.startswith(f"{available}:")
    )
