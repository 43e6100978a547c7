"""Tests for the alma-batch command line."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from alma_batch import cli
from alma_batch.core.exceptions import TransportError
from alma_batch.core.types import RunSummary


class FakeClient:
    """Async context manager standing in for `AlmaClient` during reruns."""

    users = {
        "a": {"primary_id": "a", "user_title": {"value": "dr", "desc": "Dr."}},
        "b": {"primary_id": "b", "user_title": {"value": "DR", "desc": "Dr."}},
    }

    def __init__(self) -> None:
        self.updated: list[str] = []

    @classmethod
    def from_config(cls, config, *, telemetry=None):
        return cls()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    async def get_user(self, user_id):
        if user_id not in self.users:
            raise TransportError(f"no such user {user_id}")
        return self.users[user_id]

    async def update_user(self, user_id, user):
        self.updated.append(user_id)


@pytest.mark.unit
def test_missing_subcommand_is_a_usage_error():
    with pytest.raises(SystemExit) as exc_info:
        cli.main([])

    assert exc_info.value.code == 2


@pytest.mark.unit
def test_concurrency_options_are_mutually_exclusive():
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["run", "--sequential", "--concurrency", "3"])

    assert exc_info.value.code == 2


@pytest.mark.unit
def test_invalid_configuration_exits_with_1():
    assert cli.main(["run"]) == 1


@pytest.mark.unit
def test_run_passes_page_range_and_sequential_mode(alma_env, monkeypatch):
    run_batch = AsyncMock(return_value=RunSummary(total_records=0))
    monkeypatch.setattr(cli, "run_batch", run_batch)

    code = cli.main(["run", "--from-page", "2", "--to-page", "4", "--sequential"])

    assert code == 0
    (config,), kwargs = run_batch.call_args
    assert config.max_concurrency == 1
    assert kwargs["from_page"] == 2
    assert kwargs["to_page"] == 4


@pytest.mark.unit
def test_concurrency_option_overrides_configuration(alma_env, monkeypatch):
    monkeypatch.setenv("ALMA_MAX_CONCURRENCY", "8")
    run_batch = AsyncMock(return_value=RunSummary())
    monkeypatch.setattr(cli, "run_batch", run_batch)

    assert cli.main(["run", "--concurrency", "3"]) == 0
    assert run_batch.call_args.args[0].max_concurrency == 3


@pytest.mark.unit
def test_fatal_first_listing_exits_with_1(alma_env, monkeypatch):
    monkeypatch.setattr(
        cli, "run_batch", AsyncMock(side_effect=TransportError("connection refused"))
    )

    assert cli.main(["run"]) == 1


@pytest.mark.unit
def test_rerun_processes_ids_from_files_in_order(alma_env, monkeypatch, tmp_path, caplog):
    first = tmp_path / "first.txt"
    first.write_text("a\n\nmissing\n")
    second = tmp_path / "second.txt"
    second.write_text("b\n")
    monkeypatch.setattr(cli, "AlmaClient", FakeClient)

    with caplog.at_level(logging.INFO, logger="alma_batch"):
        code = cli.main(["rerun", str(first), str(second)])

    assert code == 0
    messages = [
        r.getMessage() for r in caplog.records if r.name.startswith("alma_batch.")
    ]
    assert "user a updated." in messages
    assert "user missing: no such user missing" in messages
    assert "user b did not need updating." in messages
    assert "Rerun finished: 1 users updated. 1 errors." in messages


@pytest.mark.unit
def test_rerun_with_missing_file_exits_with_1(alma_env, monkeypatch, tmp_path):
    monkeypatch.setattr(cli, "AlmaClient", FakeClient)

    assert cli.main(["rerun", str(tmp_path / "nope.txt")]) == 1


@pytest.mark.unit
def test_log_level_is_read_from_environment(monkeypatch):
    monkeypatch.setenv("ALMA_BATCH_LOG_LEVEL", "debug")

    args = cli.build_parser().parse_args(["run"])

    assert args.log_level == "DEBUG"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rerun_users_delegates_to_orchestrator(alma_env, monkeypatch, tmp_path):
    ids = tmp_path / "ids.txt"
    ids.write_text("# retry list\nb\na\nmissing\n")
    client = FakeClient()
    fake_client_class = MagicMock(from_config=lambda *args, **kwargs: client)
    monkeypatch.setattr(cli, "AlmaClient", fake_client_class)
    config = cli.resolve_config()

    result = await cli.rerun_users(config, [ids])

    assert client.updated == ["a"]
    assert (result.updated, result.unchanged, result.failed) == (1, 1, 1)
    assert result.errors[0].user_id == "missing"
