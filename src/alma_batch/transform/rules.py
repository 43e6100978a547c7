"""Cleanup rules applied to Alma user documents.

Each rule edits a private copy of the user in place and reports whether it
changed anything. `transform_user` composes the rules selected by a
`RuleConfig` and never mutates its input.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import TYPE_CHECKING, Any

from alma_batch.constants import DEFAULT_CIRC_DESK, INTERNAL_SEGMENT
from alma_batch.core.document import has_path, list_at, lookup, lookup_str
from alma_batch.core.types import UNCHANGED, Changed, TransformOutcome

if TYPE_CHECKING:
    from alma_batch.config import RuleConfig

log = logging.getLogger(__name__)

type UserDocument = dict[str, Any]


def normalize_title(user: UserDocument, user_id: str) -> bool:
    """Remove a title that has no description, otherwise upper-case its value."""
    title = lookup(user, "user_title")
    if not isinstance(title, dict):
        return False
    if not has_path(title, "desc"):
        log.warning(
            "user %s has a title (%s) with no description, removing it",
            user_id,
            title.get("value"),
        )
        del user["user_title"]
        return True
    value = lookup_str(title, "value")
    if value is None or value == value.upper():
        return False
    title["value"] = value.upper()
    return True


def _keep_parameter(parameter: Any) -> bool:
    if lookup_str(parameter, "value", "value") == DEFAULT_CIRC_DESK:
        return False
    return lookup_str(parameter, "value", "desc") != ""


def prune_role_parameters(user: UserDocument, user_id: str) -> bool:
    """Drop default circulation desk parameters and parameters with empty descriptions."""
    changed = False
    for role in list_at(user, "user_role") or ():
        parameters = list_at(role, "parameter")
        if parameters is None:
            continue
        kept = [p for p in parameters if _keep_parameter(p)]
        if len(kept) != len(parameters):
            log.debug(
                "user %s: dropping %d role parameter(s)",
                user_id,
                len(parameters) - len(kept),
            )
            role["parameter"] = kept
            changed = True
    return changed


def prune_statistics(user: UserDocument, rules: RuleConfig, user_id: str) -> bool:
    """Drop statistics in removed categories, and internal ones on external users.

    Statistics without a category type are always kept.
    """
    statistics = list_at(user, "user_statistic")
    if statistics is None:
        return False

    user_group = lookup_str(user, "user_group", "value") or ""
    is_external = user_group in rules.external_user_groups

    def keep(statistic: Any) -> bool:
        if is_external and lookup_str(statistic, "segment_type") == INTERNAL_SEGMENT:
            log.warning(
                "user %s (group %s) removing internal statistic: %s",
                user_id,
                user_group,
                json.dumps(statistic, ensure_ascii=False),
            )
            return False
        category = lookup_str(statistic, "category_type", "value")
        if category is None:
            return True
        return category not in rules.categories_to_remove

    kept = [s for s in statistics if keep(s)]
    if len(kept) == len(statistics):
        return False
    user["user_statistic"] = kept
    return True


def transform_user(
    user: UserDocument, rules: RuleConfig, user_id: str | None = None
) -> TransformOutcome:
    """Apply the configured rules to a user document.

    Args:
        user: Decoded user JSON. Not modified.
        rules: Rule configuration selecting and parameterising the rules.
        user_id: Id used in log messages; defaults to the document's primary_id.

    Returns:
        `Changed` with the edited copy when any rule changed the user,
        otherwise `Unchanged`.
    """
    if user_id is None:
        user_id = lookup_str(user, "primary_id") or "<unknown>"
    edited = copy.deepcopy(user)

    changed = False
    if rules.normalize_titles:
        changed |= normalize_title(edited, user_id)
    if rules.prune_role_parameters:
        changed |= prune_role_parameters(edited, user_id)
    changed |= prune_statistics(edited, rules, user_id)

    if not changed or edited == user:
        return UNCHANGED
    return Changed(edited)
