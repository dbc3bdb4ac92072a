"""
Tests for the click command-line interface.

Run tests with: python -m pytest tests/test_cli.py -v
"""

import json

import pytest
from click.testing import CliRunner

from vps_autoheal import cli as cli_module
from vps_autoheal.cli import cli
from vps_autoheal.metrics import MetricSampler

from conftest import snap


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "autoheal.json"
    path.write_text(
        json.dumps(
            {
                "log_file": str(tmp_path / "autoheal.log"),
                "state_file": str(tmp_path / "autoheal.state"),
                "required_commands": [],
            }
        )
    )
    return path


def test_render_prints_units():
    result = CliRunner().invoke(cli, ["render", "--interval", "3"])

    assert result.exit_code == 0
    assert "OnUnitActiveSec=3min" in result.output
    assert "Type=oneshot" in result.output


def test_bad_config_exits_with_usage_error(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{oops")

    result = CliRunner().invoke(cli, ["--config", str(path), "render"])

    assert result.exit_code == 2


def test_dry_run_below_thresholds(tmp_path, config_file, monkeypatch):
    monkeypatch.setattr(MetricSampler, "sample", lambda self: snap(40, swap=0, load=0.2))

    result = CliRunner().invoke(cli, ["--config", str(config_file), "run", "--dry-run"])

    assert result.exit_code == 0
    lines = (tmp_path / "autoheal.log").read_text().splitlines()
    assert len(lines) == 1
    assert lines[0].endswith("RAM=40% SWAP=0% LOAD=0.20")
    assert not (tmp_path / "autoheal.state").exists()


def test_run_requires_root_without_dry_run(config_file, monkeypatch):
    monkeypatch.setattr(cli_module.os, "geteuid", lambda: 1000)

    result = CliRunner().invoke(cli, ["--config", str(config_file), "run"])

    assert result.exit_code == 1


def test_status_renders(config_file, monkeypatch):
    monkeypatch.setattr(MetricSampler, "sample", lambda self: snap(81, swap=12, load=0.7))
    monkeypatch.setattr(cli_module.SystemActions, "detect_service", lambda self, pattern: None)
    monkeypatch.setattr(cli_module, "check_os", lambda: (True, "Debian GNU/Linux 12"))

    result = CliRunner().invoke(cli, ["--config", str(config_file), "status"])

    assert result.exit_code == 0


def test_dry_run_above_warn_keeps_state_file_absent(tmp_path, monkeypatch):
    path = tmp_path / "autoheal.json"
    path.write_text(
        json.dumps(
            {
                "log_file": str(tmp_path / "autoheal.log"),
                "state_file": str(tmp_path / "autoheal.state"),
                "required_commands": [],
                "delays": {"cache_drop": 0},
            }
        )
    )
    monkeypatch.setattr(MetricSampler, "sample", lambda self: snap(80))

    result = CliRunner().invoke(cli, ["--config", str(path), "run", "--dry-run"])

    assert result.exit_code == 0
    assert any("Tier warn triggered" in line for line in (tmp_path / "autoheal.log").read_text().splitlines())
    assert not (tmp_path / "autoheal.state").exists()


def test_unwritable_log_file_exits_cleanly(config_file, monkeypatch):
    def deny(log_file):
        raise PermissionError(13, "Permission denied", log_file)

    monkeypatch.setattr(cli_module, "setup_audit_logger", deny)

    result = CliRunner().invoke(cli, ["--config", str(config_file), "run", "--dry-run"])

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
