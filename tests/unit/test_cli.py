"""Tests for CLI commands using Click's CliRunner."""

from __future__ import annotations

import json

import pytest
import yaml
from click.testing import CliRunner

from gpuguard.cli import main


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))


def test_main_help():
    runner = CliRunner()
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    assert "gpuguard" in result.output
    assert "scan" in result.output
    assert "check" in result.output
    assert "policies" in result.output


def test_main_version():
    runner = CliRunner()
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_scan_help():
    runner = CliRunner()
    result = runner.invoke(main, ["scan", "--help"])
    assert result.exit_code == 0
    assert "SNAPSHOT" in result.output


def test_scan_flags_miner(fixtures_dir):
    runner = CliRunner()
    result = runner.invoke(
        main,
        [
            "scan",
            str(fixtures_dir / "snapshot_miner.yaml"),
            "-H",
            str(fixtures_dir / "history_miner.yaml"),
        ],
    )
    assert result.exit_code == 1
    assert "Alert thresholds reached" in result.output


def test_scan_json(fixtures_dir):
    runner = CliRunner()
    result = runner.invoke(
        main,
        [
            "scan",
            str(fixtures_dir / "snapshot_miner.yaml"),
            "--history",
            str(fixtures_dir / "history_miner.yaml"),
            "--json",
        ],
    )
    assert result.exit_code == 1
    data = json.loads(result.output)
    assert data["alert"] is True
    assert data["host"] == "gpu-node-1"
    assert [m["process"]["pid"] for m in data["crypto_miners"]] == [4242]


def test_scan_malformed_snapshot(tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("host: x\ntimestamp: not-a-time\n")
    runner = CliRunner()
    result = runner.invoke(main, ["scan", str(bad)])
    assert result.exit_code == 2
    assert "Error" in result.output


def test_check_reports_violations(fixtures_dir):
    runner = CliRunner()
    result = runner.invoke(
        main,
        [
            "-p",
            str(fixtures_dir / "policies.yaml"),
            "check",
            str(fixtures_dir / "snapshot_usage.yaml"),
            "--json",
        ],
    )
    assert result.exit_code == 1
    data = json.loads(result.output)
    assert data["simulated"] is True
    assert {v["user"] for v in data["violations"]} == {"alice", "carol", "dave"}
    assert all(i["simulated"] for i in data["intents"])


def test_check_simulate_table(fixtures_dir):
    runner = CliRunner()
    result = runner.invoke(
        main,
        [
            "--policies",
            str(fixtures_dir / "policies.yaml"),
            "check",
            str(fixtures_dir / "snapshot_usage.yaml"),
            "--simulate",
        ],
    )
    assert result.exit_code == 1
    assert "dry run" in result.output
    assert "violation(s)" in result.output


def test_check_without_policies_is_clean(fixtures_dir):
    runner = CliRunner()
    result = runner.invoke(main, ["check", str(fixtures_dir / "snapshot_usage.yaml")])
    assert result.exit_code == 0
    assert "No violations" in result.output


def test_policies_yaml_dump(fixtures_dir):
    runner = CliRunner()
    result = runner.invoke(
        main, ["-p", str(fixtures_dir / "policies.yaml"), "policies", "--yaml"]
    )
    assert result.exit_code == 0
    data = yaml.safe_load(result.output)
    assert data["users"][0]["username"] == "alice"
    assert data["groups"][0]["group_name"] == "research"


def test_policies_resolve_user(fixtures_dir):
    runner = CliRunner()
    result = runner.invoke(
        main,
        [
            "-p",
            str(fixtures_dir / "policies.yaml"),
            "policies",
            "--user",
            "alice",
            "--at",
            "2024-01-15T12:00:00Z",
        ],
    )
    assert result.exit_code == 0
    assert "user:alice" in result.output


def test_policies_bad_timestamp(fixtures_dir):
    runner = CliRunner()
    result = runner.invoke(main, ["policies", "--user", "alice", "--at", "soon"])
    assert result.exit_code == 2
    assert "invalid --at" in result.output
