"""Tests for configuration loading and validation."""

import pydantic
import pytest
import yaml

from dex_migration.config import (
    DexBridgeConfig,
    LoggingConfig,
    PerformanceConfig,
    SourceConfig,
    load_config_from_yaml,
    save_config_to_yaml,
)

CONFIG_YAML = """
source:
  url: https://dex.example.test/api/
  token: ${DEX_TOKEN}
state:
  db_path: ./state.db
performance:
  default_batch_size: 50
  max_in_flight_batches: 4
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)
    return path


def test_load_config_expands_env_vars(config_file, monkeypatch):
    monkeypatch.setenv("DEX_TOKEN", "secret")

    config = load_config_from_yaml(config_file)

    assert config.source.token == "secret"
    assert config.source.url == "https://dex.example.test/api"
    assert config.performance.default_batch_size == 50
    assert config.performance.max_in_flight_batches == 4
    assert config.performance.failure_threshold == 0.5
    assert config.enrichment.lock_name == "enrichment:process"
    assert config.verification.sample_size == 20


def test_load_config_with_unset_variable(config_file, monkeypatch):
    monkeypatch.delenv("DEX_TOKEN", raising=False)

    with pytest.raises(ValueError, match="DEX_TOKEN"):
        load_config_from_yaml(config_file)


def test_load_config_missing_or_empty(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config_from_yaml(tmp_path / "nope.yaml")

    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    with pytest.raises(ValueError, match="Empty configuration"):
        load_config_from_yaml(empty)


def test_environment_overrides_nested_settings(monkeypatch):
    monkeypatch.setenv("PERFORMANCE__MAX_IN_FLIGHT_BATCHES", "7")

    config = DexBridgeConfig(source={"url": "https://dex.example.test", "token": "t"})

    assert config.performance.max_in_flight_batches == 7


def test_source_validation():
    with pytest.raises(pydantic.ValidationError):
        SourceConfig(url="dex.example.test", token="t")
    with pytest.raises(pydantic.ValidationError):
        SourceConfig(url="https://dex.example.test", token="   ")


def test_batch_size_must_fit_under_maximum():
    with pytest.raises(pydantic.ValidationError, match="cannot exceed"):
        PerformanceConfig(default_batch_size=600, max_batch_size=500)


def test_logging_validation():
    assert LoggingConfig(level="debug", format="CONSOLE").level == "DEBUG"
    with pytest.raises(pydantic.ValidationError):
        LoggingConfig(level="verbose")
    with pytest.raises(pydantic.ValidationError):
        LoggingConfig(format="xml")


def test_save_config_redacts_token(config, tmp_path):
    path = tmp_path / "out" / "config.yaml"

    save_config_to_yaml(config, path)

    saved = yaml.safe_load(path.read_text())
    assert saved["source"]["token"] == "${DEX_TOKEN}"
    assert saved["performance"]["default_batch_size"] == 10
