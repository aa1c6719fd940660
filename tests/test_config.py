"""Tests for configuration loading and validation."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from adaptive_tutor.config import MasteryConfig, ScorerConfig, Settings, load_settings


def test_defaults_match_engine_constants():
    settings = Settings()
    assert settings.mastery.initial_learning_rate == 0.4
    assert settings.mastery.stable_learning_rate == 0.15
    assert settings.mastery.half_life_days == 30
    assert settings.session.max_turns == 10
    assert settings.session.remediation_cap == 3
    assert settings.session.scorer_timeout_seconds == 120
    assert settings.recommendations.ttl_days == 14
    assert settings.recommendations.role_weights["student"] == 1.0
    assert settings.recommendations.role_weights["admin"] == 0.6


def test_load_settings_reads_yaml_and_env_overrides(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("session:\n  max_turns: 4\nmastery:\n  half_life_days: 10\n", encoding="utf-8")
    monkeypatch.setenv("ADAPTIVE_TUTOR_CONFIG_OVERRIDES", json.dumps({"session": {"remediation_cap": 2}}))

    settings = load_settings(config_path)

    assert settings.session.max_turns == 4
    assert settings.session.remediation_cap == 2
    assert settings.mastery.half_life_days == 10
    assert settings.session.advance_threshold == 0.7


def test_missing_explicit_path_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(tmp_path / "absent.yaml")


def test_missing_default_file_yields_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("ADAPTIVE_TUTOR_CONFIG_OVERRIDES", raising=False)
    assert load_settings() == Settings()


def test_invalid_payload_raises_value_error(tmp_path, monkeypatch):
    monkeypatch.delenv("ADAPTIVE_TUTOR_CONFIG_OVERRIDES", raising=False)
    config_path = tmp_path / "bad.yaml"
    config_path.write_text("mastery:\n  initial_learning_rate: 1.5\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(config_path)


def test_malformed_override_json_raises(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("{}\n", encoding="utf-8")
    monkeypatch.setenv("ADAPTIVE_TUTOR_CONFIG_OVERRIDES", "{not json")
    with pytest.raises(ValueError):
        load_settings(config_path)


def test_tier_boundaries_must_be_ordered():
    with pytest.raises(ValueError):
        MasteryConfig(basic_upper=0.7, intermediate_upper=0.5)


def test_unknown_scorer_provider_rejected():
    with pytest.raises(ValueError):
        ScorerConfig(provider="oracle")


def test_with_data_dir_relocates_every_path(tmp_path):
    settings = Settings().with_data_dir(tmp_path)
    assert settings.paths.profiles_dir == tmp_path / "profiles"
    assert settings.paths.interactions_log == tmp_path / "interactions.jsonl"
    assert settings.paths.ledger_dir.parent == Path(tmp_path)
