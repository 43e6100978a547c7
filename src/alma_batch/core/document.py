"""Path lookup helpers for schema-free JSON user documents.

Alma user documents are only partially schematized, so the transformer walks
them with explicit lookups that report absence instead of inventing defaults.
"""

from __future__ import annotations

from typing import Any, Final


class _Missing:
    """Sentinel type for an absent document path."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing()

type PathKey = str | int


def lookup(document: Any, *path: PathKey) -> Any:
    """Return the value at `path` inside `document`, or `MISSING`.

    String keys index mappings, integer keys index lists. A key of the wrong
    kind for the container at that level counts as absent.
    """
    current = document
    for key in path:
        if isinstance(key, str) and isinstance(current, dict):
            if key not in current:
                return MISSING
            current = current[key]
        elif isinstance(key, int) and isinstance(current, list):
            if not -len(current) <= key < len(current):
                return MISSING
            current = current[key]
        else:
            return MISSING
    return current


def lookup_str(document: Any, *path: PathKey) -> str | None:
    """Return the string at `path`, or None when absent or not a string."""
    value = lookup(document, *path)
    return value if isinstance(value, str) else None


def has_path(document: Any, *path: PathKey) -> bool:
    """Whether `path` resolves inside `document` (even to a null value)."""
    return lookup(document, *path) is not MISSING


def list_at(document: Any, *path: PathKey) -> list[Any] | None:
    """Return the list at `path`, or None when absent or not a list."""
    value = lookup(document, *path)
    return value if isinstance(value, list) else None
