"""Resolve-once configuration entry point.

Precedence, highest first: programmatic overrides, environment variables,
``.env`` file, TOML configuration file, schema defaults.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from alma_batch.client.alma_client import base_url_for_region
from alma_batch.core.exceptions import ConfigurationError

from .loaders import EnvironmentConfigLoader, FileConfigLoader, read_value_list
from .schema import AlmaSettings
from .types import FrozenConfig, RuleConfig

if TYPE_CHECKING:
    from .types import ConfigOrigin

log = logging.getLogger(__name__)


def resolve_settings(
    *,
    env_file: str | Path | None = None,
    config_file: str | Path | None = None,
    profile: str | None = None,
    **overrides: Any,
) -> tuple[AlmaSettings, dict[str, ConfigOrigin]]:
    """Merge every configuration source and validate the result.

    Returns:
        The validated settings and the origin of every explicitly set field.

    Raises:
        ConfigurationError: If a source cannot be loaded or values are invalid.
    """
    env_loader = EnvironmentConfigLoader()
    layers: list[tuple[ConfigOrigin, dict[str, Any]]] = []
    if config_file is not None:
        layers.append(("file", FileConfigLoader().load(config_file, profile)))
    if env_file is not None:
        layers.append(("dotenv", env_loader.load_dotenv_config(env_file)))
    layers.append(("env", env_loader.load_env_config()))
    layers.append(
        ("programmatic", {k: v for k, v in overrides.items() if v is not None})
    )

    merged: dict[str, Any] = {}
    origin: dict[str, ConfigOrigin] = {}
    for source, values in layers:
        for key, value in values.items():
            if key not in AlmaSettings.model_fields:
                log.warning("Ignoring unknown %s configuration key %r", source, key)
                continue
            merged[key] = value
            origin[key] = source

    try:
        settings = AlmaSettings(**merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    for name in AlmaSettings.model_fields:
        origin.setdefault(name, "default")
    return settings, origin


def build_rules(settings: AlmaSettings) -> RuleConfig:
    """Load the rule value lists named by the settings, once."""
    categories = (
        read_value_list(settings.categories_to_remove_file)
        if settings.categories_to_remove_file
        else frozenset()
    )
    groups = (
        read_value_list(settings.external_user_groups_file)
        if settings.external_user_groups_file
        else frozenset()
    )
    if not categories:
        log.warning("No statistic categories configured for removal")
    return RuleConfig(
        categories_to_remove=categories,
        external_user_groups=groups,
        normalize_titles=settings.normalize_titles,
        prune_role_parameters=settings.prune_role_parameters,
    )


def resolve_config(
    *,
    env_file: str | Path | None = None,
    config_file: str | Path | None = None,
    profile: str | None = None,
    **overrides: Any,
) -> FrozenConfig:
    """Resolve configuration from all sources and freeze it for the run.

    Args:
        env_file: Optional ``.env`` file to read.
        config_file: Optional TOML configuration file.
        profile: Optional profile name inside the TOML file.
        **overrides: Programmatic values; ``None`` values are ignored.

    Returns:
        The immutable run configuration, with rule lists loaded.
    """
    settings, origin = resolve_settings(
        env_file=env_file, config_file=config_file, profile=profile, **overrides
    )
    base_url = settings.base_url or base_url_for_region(settings.region or "")
    config = FrozenConfig(
        api_key=settings.api_key or "",
        base_url=base_url,
        page_size=settings.page_size,
        requests_per_second=settings.requests_per_second,
        burst=settings.burst,
        jitter_ms=settings.jitter_ms,
        timeout_seconds=settings.timeout_seconds,
        max_concurrency=settings.max_concurrency,
        rules=build_rules(settings),
        origin=origin,
    )
    log.debug("Resolved configuration: %s", config)
    return config
