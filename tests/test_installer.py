"""
Tests for scheduler provisioning and write-if-different file syncing.

Run tests with: python -m pytest tests/test_installer.py -v
"""

import os

import pytest

from vps_autoheal import installer
from vps_autoheal.installer import (
    CRON_MARKER,
    ManagedFile,
    ScheduleSpec,
    check_os,
    install,
    merge_cron_entry,
    render_cron_line,
    render_service,
    render_timer,
    sync_file,
    uninstall,
)

EXEC = "/usr/local/bin/vps-autoheal run"


class TestRendering:
    def test_service_is_oneshot(self):
        unit = render_service(ScheduleSpec(), EXEC)

        assert "Type=oneshot" in unit
        assert f"ExecStart={EXEC}" in unit
        assert "Nice=10" in unit

    def test_timer_interval(self):
        timer = render_timer(ScheduleSpec(interval_minutes=3, boot_delay_minutes=1))

        assert "OnBootSec=1min" in timer
        assert "OnUnitActiveSec=3min" in timer
        assert "WantedBy=timers.target" in timer

    def test_cron_line(self):
        assert render_cron_line(ScheduleSpec(interval_minutes=5), EXEC) == f"*/5 * * * * {EXEC} {CRON_MARKER}"

    def test_interval_bounds(self):
        with pytest.raises(ValueError):
            ScheduleSpec(interval_minutes=0)


class TestSyncFile:
    def test_creates_missing_file(self, tmp_path):
        path = tmp_path / "etc" / "unit.service"

        assert sync_file(ManagedFile(path, "hello\n", 0o600)) is True
        assert path.read_text() == "hello\n"
        assert path.stat().st_mode & 0o777 == 0o600

    def test_identical_content_is_not_rewritten(self, tmp_path):
        path = tmp_path / "unit.service"
        sync_file(ManagedFile(path, "hello\n"))
        os.utime(path, (1_000_000, 1_000_000))

        assert sync_file(ManagedFile(path, "hello\n")) is False
        assert path.stat().st_mtime == 1_000_000

    def test_different_content_is_replaced(self, tmp_path):
        path = tmp_path / "unit.service"
        path.write_text("old\n")

        assert sync_file(ManagedFile(path, "new\n")) is True
        assert path.read_text() == "new\n"


class TestCheckOs:
    @pytest.mark.parametrize(
        "content, supported",
        [
            ('ID=debian\nVERSION_ID="12"\nPRETTY_NAME="Debian GNU/Linux 12"\n', True),
            ('ID=ubuntu\nVERSION_ID="24.04"\n', True),
            ('ID=ubuntu\nVERSION_ID="20.04"\n', False),
            ('ID=linuxmint\nID_LIKE="ubuntu debian"\nVERSION_ID="21"\n', True),
            ('ID=fedora\nVERSION_ID="40"\n', False),
        ],
    )
    def test_release_matrix(self, tmp_path, content, supported):
        path = tmp_path / "os-release"
        path.write_text(content)

        assert check_os(path)[0] is supported

    def test_missing_os_release(self, tmp_path):
        assert check_os(tmp_path / "missing") == (False, "Cannot detect OS")


class TestInstall:
    def test_systemd_install_is_idempotent(self, tmp_path, config):
        commands = []
        systemd_dir = tmp_path / "systemd"
        kwargs = dict(
            exec_start=EXEC,
            systemd_dir=systemd_dir,
            config_file=tmp_path / "autoheal.json",
            runner=commands.append,
        )

        first = install(config, **kwargs)
        assert (systemd_dir / "enterprise-autoheal.service").is_file()
        assert (systemd_dir / "enterprise-autoheal.timer").is_file()
        assert (tmp_path / "autoheal.json").is_file()
        assert commands == [["systemctl", "daemon-reload"], ["systemctl", "enable", "--now", "enterprise-autoheal.timer"]]

        commands.clear()
        second = install(config, **kwargs)
        assert second.changed == []
        assert len(second.unchanged) == 2
        assert commands == []
        assert first.scheduler == "systemd"

    def test_existing_config_file_is_preserved(self, tmp_path, config):
        config_file = tmp_path / "autoheal.json"
        config_file.write_text('{"cooldown_seconds": 900}\n')

        install(config, exec_start=EXEC, systemd_dir=tmp_path / "systemd", config_file=config_file, runner=lambda cmd: None)

        assert config_file.read_text() == '{"cooldown_seconds": 900}\n'

    def test_cron_install_replaces_previous_entry(self, tmp_path, config, monkeypatch):
        written = []
        monkeypatch.setattr(installer, "read_crontab", lambda: ["0 3 * * * /usr/bin/backup", f"*/9 * * * * old {CRON_MARKER}"])
        monkeypatch.setattr(installer, "write_crontab", written.append)

        install(config, ScheduleSpec(interval_minutes=5), scheduler="cron", exec_start=EXEC, config_file=tmp_path / "c.json")

        assert written == [["0 3 * * * /usr/bin/backup", f"*/5 * * * * {EXEC} {CRON_MARKER}"]]

    def test_unknown_scheduler(self, config):
        with pytest.raises(ValueError):
            install(config, scheduler="anacron")

    def test_uninstall_removes_units(self, tmp_path, config, monkeypatch):
        monkeypatch.setattr(installer, "read_crontab", lambda: [])
        systemd_dir = tmp_path / "systemd"
        install(config, exec_start=EXEC, systemd_dir=systemd_dir, config_file=tmp_path / "c.json", runner=lambda cmd: None)
        commands = []

        removed = uninstall(systemd_dir=systemd_dir, runner=commands.append)

        assert sorted(path.name for path in removed) == ["enterprise-autoheal.service", "enterprise-autoheal.timer"]
        assert ["systemctl", "daemon-reload"] in commands


def test_merge_cron_entry_without_new_entry():
    existing = ["@reboot /bin/true", f"*/2 * * * * x {CRON_MARKER}"]

    assert merge_cron_entry(existing, None) == ["@reboot /bin/true"]
