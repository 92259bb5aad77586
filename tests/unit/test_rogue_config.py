"""Tests for rogue detection configuration and its YAML loader."""

from __future__ import annotations

import pytest

from gpuguard.detection.config import (
    PatternTarget,
    RiskThresholds,
    RogueConfig,
    export_yaml,
    load_rogue_config,
    load_rogue_config_from_string,
)
from gpuguard.errors import ConfigError


def test_defaults_are_valid():
    config = RogueConfig().validate()
    assert config.min_confidence_threshold == 0.7
    assert "xmrig" in config.suspicious_process_names


def test_load_fixture(fixtures_dir):
    config = load_rogue_config(fixtures_dir / "rogue.yaml")
    assert config.max_memory_usage_gb == 16.0
    assert "svc-backup" in config.user_whitelist
    assert config.custom_patterns[0].target is PatternTarget.PROCESS_NAME
    assert config.custom_patterns[0].confidence_boost == 0.4
    # Unspecified sections keep their defaults
    assert config.threat_weights.crypto_miner == 0.8


def test_empty_document_gives_defaults():
    assert load_rogue_config_from_string("") == RogueConfig()


def test_thresholds_must_descend():
    config = RogueConfig(risk_thresholds=RiskThresholds(critical=0.5, high=0.7))
    with pytest.raises(ConfigError, match="descending"):
        config.validate()


def test_invalid_regex_rejected():
    text = "custom_patterns:\n  - name: bad\n    pattern: '([a-z'\n"
    with pytest.raises(ConfigError, match="invalid regex"):
        load_rogue_config_from_string(text)


def test_unknown_section_key_rejected():
    with pytest.raises(ConfigError, match="Unknown keys"):
        load_rogue_config_from_string("alerts:\n  bogus: 3\n")


def test_out_of_range_values_rejected():
    with pytest.raises(ConfigError):
        load_rogue_config_from_string("min_confidence_threshold: 1.5\n")
    with pytest.raises(ConfigError):
        load_rogue_config_from_string("max_memory_usage_gb: -1\n")


def test_malformed_yaml_is_config_error():
    with pytest.raises(ConfigError):
        load_rogue_config_from_string("alerts: [unclosed")


def test_non_numeric_value_is_config_error():
    with pytest.raises(ConfigError, match="Malformed"):
        load_rogue_config_from_string("max_duration_hours: forever\n")


def test_single_name_is_one_entry():
    config = load_rogue_config_from_string("process_whitelist: jupyter\n")
    assert config.process_whitelist == frozenset({"jupyter"})


def test_name_list_must_be_a_list():
    with pytest.raises(ConfigError, match="list of names"):
        load_rogue_config_from_string("user_whitelist: {root: true}\n")


def test_whitelist_management_is_case_insensitive():
    config = RogueConfig(user_whitelist=frozenset({"root"}))
    added = config.with_user_whitelisted("Alice").with_user_whitelisted("ALICE")
    assert added.user_whitelist == frozenset({"root", "alice"})
    assert added.without_user_whitelisted("alice").user_whitelist == {"root"}
    # Original is untouched
    assert config.user_whitelist == frozenset({"root"})


def test_process_whitelist_management():
    config = RogueConfig(process_whitelist=frozenset())
    config = config.with_process_whitelisted("Blender")
    assert config.process_whitelist == frozenset({"blender"})
    removed = config.without_process_whitelisted("BLENDER")
    assert removed.process_whitelist == frozenset()


def test_with_thresholds_validates():
    config = RogueConfig().with_thresholds(max_memory_usage_gb=40.0)
    assert config.max_memory_usage_gb == 40.0
    with pytest.raises(ConfigError):
        RogueConfig().with_thresholds(max_utilization_pct=150.0)


def test_export_round_trips(fixtures_dir):
    config = load_rogue_config(fixtures_dir / "rogue.yaml")
    assert load_rogue_config_from_string(export_yaml(config)) == config
