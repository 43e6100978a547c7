"""Configuration management for alma_batch.

Configuration is resolved once, frozen, then passed explicitly:

- AlmaSettings: Pydantic schema validating every source
- FrozenConfig: Immutable configuration for one run
- RuleConfig: Immutable transformation rules shared by every page task
"""

from .api import build_rules, resolve_config, resolve_settings
from .loaders import (
    ConfigFileError,
    EnvironmentConfigLoader,
    FileConfigLoader,
    read_value_list,
)
from .schema import AlmaSettings
from .types import ConfigOrigin, FrozenConfig, RuleConfig, SourceMap

__all__ = [  # noqa: RUF022
    # Main API
    "resolve_config",
    "resolve_settings",
    "build_rules",
    # Core types
    "FrozenConfig",
    "RuleConfig",
    "SourceMap",
    "ConfigOrigin",
    # Advanced usage
    "AlmaSettings",
    "EnvironmentConfigLoader",
    "FileConfigLoader",
    "ConfigFileError",
    "read_value_list",
]
