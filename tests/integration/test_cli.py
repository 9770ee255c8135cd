"""
Integration tests for the command line interface.
"""
import json

import pytest
from click.testing import CliRunner

import dashboard.app as app_module
from main import cli
from procurement.database import Database
from procurement.lifecycle import PurchaseOrderService


@pytest.fixture
def env(monkeypatch, temp_dir):
    monkeypatch.setenv("STORAGE_BACKEND", "sqlite")
    monkeypatch.setenv("DB_PATH", str(temp_dir / "data" / "buildlite.db"))
    monkeypatch.setenv("DATA_DIR", str(temp_dir / "data"))
    monkeypatch.setenv("CONFIG_DIR", str(temp_dir / "config"))
    monkeypatch.setenv("BACKUP_DIR", str(temp_dir / "backups"))
    monkeypatch.setenv("ACTIVE_CLIENT", "default")
    monkeypatch.delenv("SMTP_HOST", raising=False)
    monkeypatch.delenv("COST_CODES_PATH", raising=False)
    yield temp_dir
    app_module._services = None


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def seeded(env, sample_payload) -> str:
    service = PurchaseOrderService(Database(env / "data" / "buildlite.db"))
    return service.create(sample_payload).po_number


@pytest.mark.integration
class TestCli:
    def test_list_empty(self, runner, env):
        result = runner.invoke(cli, ["list"])
        assert result.exit_code == 0
        assert "No purchase orders found." in result.output

    def test_list_json(self, runner, seeded):
        result = runner.invoke(cli, ["list", "--json"])
        assert result.exit_code == 0
        start = result.output.index("[")
        assert [po["po_number"] for po in json.loads(result.output[start:])] == [seeded]

    def test_list_table(self, runner, seeded):
        result = runner.invoke(cli, ["list", "--type", "M"])
        assert result.exit_code == 0
        assert "M0001" in result.output
        assert "1 purchase order(s)." in result.output

    def test_show(self, runner, seeded):
        result = runner.invoke(cli, ["show", seeded])
        assert result.exit_code == 0
        assert "Acme Aggregates Ltd" in result.output
        assert "CREATED" in result.output

    def test_show_unknown(self, runner, env):
        result = runner.invoke(cli, ["show", "M9999"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_pdf(self, runner, seeded, env):
        out = env / "order.pdf"
        result = runner.invoke(cli, ["pdf", seeded, "-o", str(out)])
        assert result.exit_code == 0
        assert out.read_bytes().startswith(b"%PDF")

    def test_import_cost_codes(self, runner, env, sample_cost_codes_csv):
        result = runner.invoke(cli, ["import-cost-codes", str(sample_cost_codes_csv)])
        assert result.exit_code == 0
        assert "Imported 4 cost codes" in result.output

    def test_backup(self, runner, seeded, env):
        result = runner.invoke(cli, ["backup"])
        assert result.exit_code == 0
        assert "Backup successful" in result.output
        assert len(list((env / "backups").glob("*.zip"))) == 1

    def test_check(self, runner, env):
        result = runner.invoke(cli, ["check"])
        assert result.exit_code == 0
        assert "not configured" in result.output
        assert "Last backup:    never" in result.output
