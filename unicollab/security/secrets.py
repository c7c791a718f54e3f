"""Utilities for validating API keys without leaking values."""
from __future__ import annotations

from typing import Final

__all__ = ["MissingSecretError", "require_secret", "is_placeholder"]


class MissingSecretError(RuntimeError):
    """Raised when a required key is absent or still set to a placeholder."""


_PLACEHOLDER_VALUES: Final[set[str]] = {
    "changeme",
    "change-me",
    "placeholder",
    "example",
    "sample",
    "your-key-here",
    "your-anon-key",
}


def is_placeholder(value: str | None) -> bool:
    if not value:
        return True
    normalized = value.strip().lower()
    return not normalized or normalized in _PLACEHOLDER_VALUES


def require_secret(name: str, value: str | None) -> str:
    """Return a trimmed key value or raise :class:`MissingSecretError`.

    ``name`` is only used for the error message; the value is never echoed.
    """

    if is_placeholder(value):
        raise MissingSecretError(f"{name} is required and must not use placeholder defaults")
    return value.strip()
