"""Loading configuration values from files and the environment.

Three kinds of input are read here:

- TOML configuration, either the ``[tool.alma_batch]`` table of a
  ``pyproject.toml`` or the root table of a standalone file, with optional
  named profiles
- ``ALMA_*`` environment variables and an optional ``.env`` file
- value lists (statistic categories, user groups), one value per line
"""

from collections.abc import Mapping
import os
from pathlib import Path
import tomllib
from typing import Any

from dotenv import dotenv_values

from alma_batch.core.exceptions import ConfigurationError


class ConfigFileError(ConfigurationError):
    """Raised when a configuration or value-list file cannot be loaded."""

    def __init__(
        self, file_path: Path, message: str, cause: Exception | None = None
    ) -> None:
        """Initialize with file path, message, and optional cause."""
        self.file_path = file_path
        self.message = message
        self.cause = cause
        super().__init__(f"Config file error in {file_path}: {message}")


# Environment variable -> settings field. Earlier names win when several are set.
ENV_VARS: Mapping[str, str] = {
    "ALMA_REGION": "region",
    "ALMA_APIKEY": "api_key",
    "ALMA_API_KEY": "api_key",
    "ALMA_BASE_URL": "base_url",
    "ALMA_TIMEOUT_SECONDS": "timeout_seconds",
    "ALMA_REQUESTS_PER_SECOND": "requests_per_second",
    "ALMA_BURST": "burst",
    "ALMA_JITTER_MS": "jitter_ms",
    "ALMA_PAGE_SIZE": "page_size",
    "ALMA_MAX_CONCURRENCY": "max_concurrency",
    "CATEGORIES_TO_REMOVE": "categories_to_remove_file",
    "EXTERNAL_USER_GROUPS": "external_user_groups_file",
    "ALMA_NORMALIZE_TITLES": "normalize_titles",
    "ALMA_PRUNE_ROLE_PARAMETERS": "prune_role_parameters",
}

SENSITIVE_FIELDS = frozenset({"api_key"})


def _select_env_values(source: Mapping[str, str | None]) -> dict[str, str]:
    values: dict[str, str] = {}
    for env_var, field_name in ENV_VARS.items():
        value = source.get(env_var)
        if value is not None and field_name not in values:
            values[field_name] = value
    return values


class EnvironmentConfigLoader:
    """Loads configuration from environment variables and ``.env`` files."""

    def load_env_config(self) -> dict[str, str]:
        """Return the settings found in the process environment."""
        return _select_env_values(os.environ)

    def load_dotenv_config(self, env_file: str | Path) -> dict[str, str]:
        """Return the settings found in a ``.env`` file.

        The file is read without modifying ``os.environ``.

        Raises:
            ConfigFileError: If the file does not exist.
        """
        env_path = Path(env_file)
        if not env_path.is_file():
            raise ConfigFileError(env_path, "environment file not found")
        return _select_env_values(dotenv_values(env_path))

    def get_env_summary(self) -> dict[str, str]:
        """Summarise the relevant environment variables with secrets redacted."""
        return {
            env_var: "<redacted>"
            if field_name in SENSITIVE_FIELDS
            else os.environ[env_var]
            for env_var, field_name in ENV_VARS.items()
            if env_var in os.environ
        }


class FileConfigLoader:
    """Loads configuration from TOML files with profile support."""

    TOOL_TABLE = "alma_batch"

    def load(self, file_path: str | Path, profile: str | None = None) -> dict[str, Any]:
        """Load configuration values from a TOML file.

        Args:
            file_path: A ``pyproject.toml`` (values under ``[tool.alma_batch]``)
                or a standalone TOML file (values at the root).
            profile: Optional profile name under ``profiles.<name>``.

        Returns:
            Dictionary of configuration values; empty when a pyproject has no
            alma_batch table.

        Raises:
            ConfigFileError: If the file cannot be read or parsed, or the
                profile does not exist.
        """
        path = Path(file_path)
        try:
            with path.open(mode="rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigFileError(path, f"Failed to parse TOML: {e}", cause=e) from e

        if path.name == "pyproject.toml":
            data = data.get("tool", {}).get(self.TOOL_TABLE, {})
        if not isinstance(data, dict):
            raise ConfigFileError(path, "configuration must be a table")

        profiles = data.get("profiles", {})
        if profile:
            if profile not in profiles:
                available = sorted(profiles) if profiles else []
                raise ConfigFileError(
                    path,
                    f"Profile '{profile}' not found. Available profiles: {available}",
                )
            return dict(profiles[profile])

        config = dict(data)
        config.pop("profiles", None)
        return config


def read_value_list(path: str | Path) -> frozenset[str]:
    """Read one value per line into a frozenset.

    Surrounding whitespace is stripped; blank lines and ``#`` comments are skipped.

    Raises:
        ConfigFileError: If the file cannot be read.
    """
    list_path = Path(path)
    try:
        text = list_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigFileError(list_path, f"Failed to read value list: {e}", cause=e) from e
    return frozenset(
        line.strip()
        for line in text.splitlines()
        if line.strip() and not line.lstrip().startswith("#")
    )
