"""
Unit tests for configuration loading and config bootstrap.
"""
import json

import pytest

import bootstrap
from config import Config


@pytest.mark.unit
class TestConfig:
    def test_env_values(self, monkeypatch, temp_dir):
        monkeypatch.setenv("CONFIG_DIR", str(temp_dir))
        monkeypatch.setenv("STORAGE_BACKEND", "JSON")
        monkeypatch.setenv("APPROVER_EMAILS", "a@x.test, b@x.test,")
        monkeypatch.setenv("ALLOW_CREDIT_LINES", "true")
        monkeypatch.setenv("SMTP_STARTTLS", "false")
        monkeypatch.setenv("SMTP_PORT", "465")
        config = Config()
        assert config.storage_backend == "json"
        assert config.approver_emails == ["a@x.test", "b@x.test"]
        assert config.allow_credit_lines is True
        assert config.smtp_starttls is False
        assert config.smtp_port == 465

    def test_settings_file_overrides_env(self, monkeypatch, temp_dir):
        monkeypatch.setenv("APP_NAME", "From Env")
        (temp_dir / "app_settings.json").write_text(json.dumps({
            "app_name": "From File",
            "default_vat_rate": "0.05",
            "allow_credit_lines": "yes",
            "approver_emails": "x@y.test; z@y.test",
            "_company_name": "ignored",
            "unknown_key": 1,
        }), encoding="utf-8")
        config = Config(config_dir=temp_dir)
        assert config.app_name == "From File"
        assert config.default_vat_rate == 0.05
        assert config.allow_credit_lines is True
        assert config.approver_emails == ["x@y.test; z@y.test"]
        assert config.company_name != "ignored"

    def test_broken_settings_file_is_ignored(self, temp_dir):
        (temp_dir / "app_settings.json").write_text("{broken", encoding="utf-8")
        assert Config(config_dir=temp_dir, app_name="Build Lite").app_name == "Build Lite"

    def test_cost_codes_path_defaults_to_config_dir(self, monkeypatch, temp_dir):
        monkeypatch.delenv("COST_CODES_PATH", raising=False)
        assert Config(config_dir=temp_dir).cost_codes_path == temp_dir / "cost_codes.json"
        monkeypatch.setenv("COST_CODES_PATH", str(temp_dir / "env.csv"))
        assert Config(config_dir=temp_dir).cost_codes_path == temp_dir / "env.csv"

    def test_cost_codes_path_from_settings_file(self, temp_dir):
        (temp_dir / "app_settings.json").write_text(
            json.dumps({"cost_codes_path": str(temp_dir / "codes.csv")}), encoding="utf-8")
        assert Config(config_dir=temp_dir, cost_codes_path=None).cost_codes_path == temp_dir / "codes.csv"

    def test_brand(self, test_config):
        test_config.company_vat_number = "GB1"
        assert test_config.brand["name"] == test_config.company_name
        assert test_config.brand["vat_number"] == "GB1"


@pytest.mark.unit
class TestBootstrap:
    def test_restores_missing_files(self, temp_dir):
        restored = bootstrap.ensure_config_files(temp_dir / "config")
        assert "app_settings.json" in restored
        assert "cost_codes.json" in restored
        assert "approval_requested.txt.j2" in restored
        assert (temp_dir / "config" / "decision_made.txt.j2").exists()
        assert bootstrap.ensure_config_files(temp_dir / "config") == []

    def test_repairs_empty_settings(self, temp_dir):
        config_dir = temp_dir / "config"
        bootstrap.ensure_config_files(config_dir)
        (config_dir / "app_settings.json").write_text("", encoding="utf-8")
        assert bootstrap.ensure_config_files(config_dir) == ["app_settings.json"]
        json.loads((config_dir / "app_settings.json").read_text(encoding="utf-8"))

    def test_keeps_edited_templates(self, temp_dir):
        config_dir = temp_dir / "config"
        config_dir.mkdir()
        (config_dir / "decision_made.txt.j2").write_text("mine", encoding="utf-8")
        bootstrap.ensure_config_files(config_dir)
        assert (config_dir / "decision_made.txt.j2").read_text(encoding="utf-8") == "mine"
