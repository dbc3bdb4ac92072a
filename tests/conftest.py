"""Shared fakes for watchdog tests: clock, sampler and recording actions."""

import logging
from typing import List, Optional, Sequence

import pytest

from vps_autoheal.actions import ProcessInfo, SystemActions
from vps_autoheal.config import Delays, WatchdogConfig
from vps_autoheal.log import AUDIT_LOGGER_NAME, close_audit_logger, setup_audit_logger
from vps_autoheal.metrics import MetricSnapshot


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class SequenceSampler:
    """Returns the given snapshots in order, then repeats the last one."""

    def __init__(self, snapshots: Sequence[MetricSnapshot]) -> None:
        self.snapshots = list(snapshots)
        self.calls = 0

    def sample(self) -> MetricSnapshot:
        index = min(self.calls, len(self.snapshots) - 1)
        self.calls += 1
        return self.snapshots[index]


class RecordingActions(SystemActions):
    def __init__(
        self,
        calls: Optional[List[str]] = None,
        services: Optional[dict] = None,
        victim: Optional[ProcessInfo] = ProcessInfo(pid=4242, name="php-fpm8.3", rss=512 * 1024 * 1024),
        missing: Optional[List[str]] = None,
    ) -> None:
        super().__init__(dry_run=False)
        self.calls = calls if calls is not None else []
        self.services = services if services is not None else {r"php.*fpm": "php8.3-fpm", r"mariadb|mysql": "mariadb"}
        self.victim = victim
        self.missing = missing or []

    def missing_commands(self, names):
        return [name for name in names if name in self.missing]

    def detect_service(self, pattern: str) -> Optional[str]:
        return self.services.get(pattern)

    def drop_caches(self) -> bool:
        self.calls.append("drop_caches")
        return True

    def reload_service(self, name: str) -> bool:
        self.calls.append(f"reload:{name}")
        return True

    def restart_service(self, name: str) -> bool:
        self.calls.append(f"restart:{name}")
        return True

    def flush_database(self) -> bool:
        self.calls.append("flush_database")
        return True

    def heaviest_process(self, pattern: Optional[str] = None) -> Optional[ProcessInfo]:
        return self.victim

    def terminate_process(self, pid: int, grace_seconds: float) -> bool:
        self.calls.append(f"terminate:{pid}")
        return True

    def reboot(self) -> bool:
        self.calls.append("reboot")
        return True


def snap(ram: int, swap: int = 10, load: float = 1.0) -> MetricSnapshot:
    return MetricSnapshot(ram_used_pct=ram, swap_used_pct=swap, load_avg=load)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return WatchdogConfig(
        log_file=str(tmp_path / "autoheal.log"),
        state_file=str(tmp_path / "autoheal.state"),
        delays=Delays(),
    )


@pytest.fixture
def audit(config):
    logger = setup_audit_logger(config.log_file)
    yield logger
    close_audit_logger()


def read_audit(config) -> List[str]:
    for handler in logging.getLogger(AUDIT_LOGGER_NAME).handlers:
        handler.flush()
    with open(config.log_file) as f:
        return [line.rstrip("\n") for line in f]
