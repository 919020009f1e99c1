"""
Integration tests for the sync_tables command line tool.

Every command runs against the in-memory demo base.
"""

import importlib.util
import json
import logging
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "sync_tables.py"


@pytest.fixture(scope="module")
def cli():
    spec = importlib.util.spec_from_file_location("sync_tables", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep real credentials and settings out of the tests."""
    for name in ("AIRTABLE_TOKEN", "AIRTABLE_BASE_ID", "VAULT_ADDR", "VAULT_TOKEN", "JSON_LOGGING"):
        monkeypatch.delenv(name, raising=False)

    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
    root.setLevel(level)


def run(cli, capsys, *argv):
    code = cli.main(list(argv))
    output = capsys.readouterr().out
    return code, json.loads(output) if output.strip() else None


class TestSyncCli:
    """Test the CLI commands."""

    def test_sync(self, cli, capsys):
        """Test a one-off sync of the demo base."""
        code, result = run(cli, capsys, "--demo", "sync")

        assert code == 0
        assert result["succeeded"] is True
        counts = [table["counts"]["inserted"] for table in result["tables"]]
        assert counts == [3, 1]

    def test_sync_watch(self, cli, capsys):
        """Test that watch mode prints one report per run."""
        code = cli.main(["--demo", "sync", "--watch", "--interval", "0.01", "--iterations", "2"])

        assert code == 0
        assert capsys.readouterr().out.count('"correlation_id"') == 2

    def test_plan(self, cli, capsys):
        """Test that planning lists the rows a sync would insert."""
        code, result = run(cli, capsys, "--demo", "plan")

        assert code == 0
        team_a = result["tables"][0]
        assert team_a["dry_run"] is True
        assert team_a["provisioning_state"] == "not_provisioned"
        assert len(team_a["planned_actions"][0]["row_data"]) == 3

    def test_provision(self, cli, capsys):
        code, result = run(cli, capsys, "--demo", "provision")

        assert code == 0
        assert [t["provisioning_state"] for t in result["tables"]] == ["provisioned", "provisioned"]

    def test_status(self, cli, capsys):
        code, result = run(cli, capsys, "--demo", "status")

        assert code == 0
        assert result["source"] == {"table": "Source Data", "exists": True, "rows": 3}
        assert result["mappings"][0]["merged"]["exists"] is False

    def test_missing_credentials(self, cli, capsys):
        """Test that a run without a token exits with an error."""
        code, result = run(cli, capsys, "--base-id", "appTest", "sync")

        assert code == 1
        assert result is None

    def test_no_command(self, cli, capsys):
        assert cli.main([]) == 1

    def test_demo_store_uses_configured_tables(self, cli):
        """Test seeding of custom mapping table names."""
        from src.config.settings import SyncSettings

        store = cli.build_demo_store(SyncSettings(mapping_tables=["Finance Mapping"]))

        assert store.table_names() == ["Source Data", "Finance Mapping"]
        assert len(store.rows("Finance Mapping")) == 3
