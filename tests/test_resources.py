"""Tests for the resource kind registry."""

import pytest

from dex_migration.client.exceptions import ResourceKindError
from dex_migration.resources import (
    get_enrichable_info,
    get_info,
    is_valid_kind,
    resolve_kinds,
)


@pytest.mark.parametrize("name", ["cases", "case", "CASE", "Cases"])
def test_aliases_resolve(name):
    assert get_info(name).name == "cases"


def test_unknown_kind():
    with pytest.raises(ResourceKindError, match="Unknown resource kind"):
        get_info("outlets")
    assert is_valid_kind("outlets") is False
    assert is_valid_kind("session") is True


def test_resolve_kinds_dedupes_in_order():
    assert resolve_kinds(["session", "clients", "SESSIONS", "client"]) == ["sessions", "clients"]


def test_only_cases_and_sessions_are_enrichable():
    assert get_enrichable_info("session").parent_id_field == "case_id"
    with pytest.raises(ResourceKindError, match="cannot be enriched"):
        get_enrichable_info("clients")
