"""Pure transformation rules for Alma user documents."""

from .rules import (
    normalize_title,
    prune_role_parameters,
    prune_statistics,
    transform_user,
)

__all__ = [
    "transform_user",
    "normalize_title",
    "prune_role_parameters",
    "prune_statistics",
]
