"""Tests for runtime settings."""

import json
import os

import pytest

from fiscal_engine.config import Settings, configure_logging
from fiscal_engine.errors import RuleTableError
from fiscal_engine.rules import DEFAULT_RULES_VERSION


def test_defaults_use_built_in_tables():
    settings = Settings()
    assert settings.log_level == "INFO"
    assert settings.load_rule_set().version == DEFAULT_RULES_VERSION
    assert settings.load_exclusions().is_excluded("SIMPLES_NACIONAL", "PIS_COFINS_001")


def test_from_env(monkeypatch, tmp_path):
    rules = tmp_path / "rules.json"
    rules.write_text(
        json.dumps(
            {
                "version": "2026.1",
                "rules": [
                    {
                        "rule_code": "CUSTOM_001",
                        "tax_types": ["PIS"],
                        "treatment": "eligible-input-credit",
                    }
                ],
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("FISCAL_ENGINE_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("FISCAL_ENGINE_RULES_PATH", str(rules))
    monkeypatch.delenv("FISCAL_ENGINE_EXCLUSIONS_PATH", raising=False)

    settings = Settings.from_env()
    assert settings.log_level == "DEBUG"
    assert settings.load_rule_set().version == "2026.1"
    assert settings.exclusions_path is None


def test_env_file(monkeypatch, tmp_path):
    monkeypatch.delenv("FISCAL_ENGINE_EXCLUSIONS_PATH", raising=False)
    exclusions = tmp_path / "exclusions.json"
    exclusions.write_text(json.dumps({"LUCRO_REAL": {"ICMS_001": "Review manually"}}))
    env_file = tmp_path / ".env"
    env_file.write_text(f"FISCAL_ENGINE_EXCLUSIONS_PATH={exclusions}\n")

    try:
        settings = Settings.from_env(str(env_file))
        assert settings.load_exclusions().reason("LUCRO_REAL", "ICMS_001") == "Review manually"
    finally:
        os.environ.pop("FISCAL_ENGINE_EXCLUSIONS_PATH", None)


def test_bad_rule_file(tmp_path):
    rules = tmp_path / "rules.json"
    rules.write_text("not json")
    with pytest.raises(RuleTableError):
        Settings(rules_path=str(rules)).load_rule_set()


def test_configure_logging_accepts_lowercase_level():
    configure_logging("debug")
    configure_logging("INFO")
