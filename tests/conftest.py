"""
Global test configuration for alma_batch.
"""

import logging
import os

import pytest

from alma_batch.config import RuleConfig

# --- Environment Isolation (Autouse) ---

_ISOLATED_ENV_PREFIXES = ("ALMA_",)
_ISOLATED_ENV_VARS = ("CATEGORIES_TO_REMOVE", "EXTERNAL_USER_GROUPS")


@pytest.fixture(autouse=True)
def isolate_alma_env(request, monkeypatch):
    """Ensure a clean ALMA_* environment for each test.

    Escape hatch: mark a test with @pytest.mark.allow_env_pollution to keep
    the current environment unchanged.
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return

    for key in list(os.environ.keys()):
        if key.startswith(_ISOLATED_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)
    for key in _ISOLATED_ENV_VARS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def quiet_http_loggers():
    """Keep transport-level debug logs out of captured test output."""
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def pytest_configure(config):
    """Configure custom markers for test organization."""
    markers = [
        "unit: Fast, isolated unit tests",
        "allow_env_pollution: Keep ALMA_* environment variables for this test",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


# --- Core Fixtures ---


@pytest.fixture
def rules() -> RuleConfig:
    """Rules matching a typical production run."""
    return RuleConfig.build(
        categories_to_remove={"RESPONSIBILITY_CENTER", "FULL_PART_TIME", "EMPLOYEE_DEPT"},
        external_user_groups={"EXTERNAL", "ALUMNI"},
    )


@pytest.fixture
def alma_env(monkeypatch):
    """Minimal valid connection settings in the environment."""
    monkeypatch.setenv("ALMA_REGION", "eu")
    monkeypatch.setenv("ALMA_APIKEY", "test-key")
