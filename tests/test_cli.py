"""Tests for the dex-bridge command line, run through click's CliRunner."""

import pytest
from click.testing import CliRunner
from conftest import FakeSource, make_clients

from dex_migration import __version__
from dex_migration.cli import context as context_module
from dex_migration.cli.commands.migrate import parse_filters
from dex_migration.cli.main import cli
from dex_migration.client.exceptions import ValidationError
from dex_migration.config import StateConfig
from dex_migration.migration.records import RecordStore


class ClosableSource(FakeSource):
    closed = 0

    async def close(self) -> None:
        self.closed += 1


@pytest.fixture
def fake_source(monkeypatch) -> ClosableSource:
    source = ClosableSource({"clients": make_clients(12)})
    monkeypatch.setattr(context_module, "DexSourceClient", lambda **kwargs: source)
    return source


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "state.db"


@pytest.fixture
def config_file(tmp_path, db_path, monkeypatch):
    monkeypatch.delenv("DEX_BRIDGE_CONFIG", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "source:\n"
        "  url: https://dex.example.test/api\n"
        "  token: test-token\n"
        "state:\n"
        f"  db_path: {db_path}\n"
        "performance:\n"
        "  default_batch_size: 5\n"
        "  rate_limit: 100\n"
    )
    return path


@pytest.fixture
def invoke(config_file):
    runner = CliRunner()

    def _invoke(*args: str, **kwargs):
        return runner.invoke(cli, ["--config", str(config_file), *args], **kwargs)

    return _invoke


def test_parse_filters():
    filters = ("created_date_from=2024-01-01", "is_ascending=false", "page_size=50")
    assert parse_filters(filters) == {
        "created_date_from": "2024-01-01",
        "is_ascending": False,
        "page_size": 50,
    }
    with pytest.raises(ValidationError):
        parse_filters(("no-equals-sign",))


def test_version():
    result = CliRunner().invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_missing_config_exits_with_config_error(monkeypatch):
    monkeypatch.delenv("DEX_BRIDGE_CONFIG", raising=False)

    result = CliRunner().invoke(cli, ["migrate", "list"])

    assert result.exit_code == 2
    assert "Configuration file required" in result.output


def test_list_without_migrations(invoke):
    result = invoke("migrate", "list")

    assert result.exit_code == 0
    assert "No migrations found" in result.output


def test_run_migration(invoke, fake_source, db_path):
    result = invoke("migrate", "run", "clients")

    assert result.exit_code == 0, result.output
    assert "Migration 1 completed" in result.output
    assert fake_source.closed == 1
    assert RecordStore(StateConfig(db_path=str(db_path))).count_migrated("clients") == 12

    status = invoke("migrate", "status", "1", "--batches")
    assert status.exit_code == 0


def test_create_then_cancel(invoke, fake_source):
    created = invoke("migrate", "create", "clients", "--name", "nightly")
    assert created.exit_code == 0, created.output
    assert "Created migration 1 with 3 batches for 12 records" in created.output

    declined = invoke("migrate", "cancel", "1", input="n\n")
    assert declined.exit_code == 0
    assert "Operation cancelled." in declined.output

    cancelled = invoke("migrate", "cancel", "1", "--yes")
    assert cancelled.exit_code == 0
    assert "3 pending batches dropped" in cancelled.output


def test_unknown_migration_is_a_state_error(invoke):
    result = invoke("migrate", "status", "99")

    assert result.exit_code == 5


def test_bad_filter_is_a_validation_error(invoke):
    result = invoke("migrate", "run", "clients", "-f", "created_date_from")

    assert result.exit_code == 2
    assert "KEY=VALUE" in result.output


def test_pause_without_running_enrichment(invoke, fake_source):
    result = invoke("enrich", "pause", "cases")

    assert result.exit_code == 0
    assert "No cases enrichment is running" in result.output


def test_clients_cannot_be_enriched(invoke):
    result = invoke("enrich", "start", "clients")

    assert result.exit_code == 2
