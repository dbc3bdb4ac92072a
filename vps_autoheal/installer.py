"""
Scheduler provisioning.

Renders the systemd service/timer pair (or a cron entry) that invokes
``vps-autoheal run`` periodically. Every generated file is a ManagedFile:
a target path plus its desired content, written only when the content on
disk differs.
"""

import json
import logging
import os
import shutil
import subprocess
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from string import Template
from typing import Callable, Dict, List, Optional, Tuple, Union

from .actions import run_command
from .config import DEFAULT_CONFIG_FILE, WatchdogConfig

logger = logging.getLogger("vps_autoheal")

SYSTEMD_DIR = Path("/etc/systemd/system")
OS_RELEASE = Path("/etc/os-release")
CRON_MARKER = "# vps-autoheal"

SUPPORTED_RELEASES: Dict[str, Tuple[str, ...]] = {
    "debian": ("12", "13"),
    "ubuntu": ("22.04", "24.04"),
}

SERVICE_TEMPLATE = Template(
    """[Unit]
Description=Enterprise AutoHeal memory watchdog
After=network.target

[Service]
Type=oneshot
ExecStart=$exec_start
Nice=$nice
IOSchedulingClass=best-effort
IOSchedulingPriority=7
"""
)

TIMER_TEMPLATE = Template(
    """[Unit]
Description=Run Enterprise AutoHeal every $interval minutes

[Timer]
OnBootSec=${boot_delay}min
OnUnitActiveSec=${interval}min
Persistent=true

[Install]
WantedBy=timers.target
"""
)

CRON_TEMPLATE = Template("*/$interval * * * * $exec_start $marker")


@dataclass(frozen=True)
class ScheduleSpec:
    interval_minutes: int = 2
    boot_delay_minutes: int = 2
    nice: int = 10
    unit_name: str = "enterprise-autoheal"

    def __post_init__(self) -> None:
        if not 1 <= self.interval_minutes <= 59:
            raise ValueError("interval_minutes must be between 1 and 59")

    @property
    def service_name(self) -> str:
        return f"{self.unit_name}.service"

    @property
    def timer_name(self) -> str:
        return f"{self.unit_name}.timer"


@dataclass(frozen=True)
class ManagedFile:
    path: Path
    content: str
    mode: int = 0o644


@dataclass
class InstallResult:
    scheduler: str
    changed: List[Path] = field(default_factory=list)
    unchanged: List[Path] = field(default_factory=list)
    commands: List[List[str]] = field(default_factory=list)


# ----------------------------------------------------------------
# Rendering
# ----------------------------------------------------------------
def default_exec_start() -> str:
    executable = shutil.which("vps-autoheal")
    if executable:
        return f"{executable} run"
    return f"{sys.executable} -m vps_autoheal run"


def render_service(spec: ScheduleSpec, exec_start: str) -> str:
    return SERVICE_TEMPLATE.substitute(exec_start=exec_start, nice=spec.nice)


def render_timer(spec: ScheduleSpec) -> str:
    return TIMER_TEMPLATE.substitute(interval=spec.interval_minutes, boot_delay=spec.boot_delay_minutes)


def render_cron_line(spec: ScheduleSpec, exec_start: str) -> str:
    return CRON_TEMPLATE.substitute(interval=spec.interval_minutes, exec_start=exec_start, marker=CRON_MARKER)


def render_config(config: WatchdogConfig) -> str:
    return json.dumps(config.to_dict(), indent=2) + "\n"


def systemd_files(spec: ScheduleSpec, exec_start: str, systemd_dir: Path = SYSTEMD_DIR) -> List[ManagedFile]:
    return [
        ManagedFile(systemd_dir / spec.service_name, render_service(spec, exec_start)),
        ManagedFile(systemd_dir / spec.timer_name, render_timer(spec)),
    ]


# ----------------------------------------------------------------
# Write-if-different
# ----------------------------------------------------------------
def sync_file(managed: ManagedFile) -> bool:
    """
    Bring managed.path to the desired content.

    Returns:
        True if the file was created or rewritten, False if it already matched.
    """
    path = Path(managed.path)
    if path.is_file():
        try:
            if path.read_text() == managed.content:
                if (path.stat().st_mode & 0o777) != managed.mode:
                    os.chmod(path, managed.mode)
                return False
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Could not compare {path}: {e}")
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(managed.content)
        os.chmod(tmp_name, managed.mode)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    logger.info(f"Wrote {path}")
    return True


# ----------------------------------------------------------------
# OS checks
# ----------------------------------------------------------------
def parse_os_release(text: str) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def check_os(os_release: Union[str, Path] = OS_RELEASE) -> Tuple[bool, str]:
    """Return (supported, description) for the running distribution."""
    try:
        info = parse_os_release(Path(os_release).read_text())
    except OSError:
        return False, "Cannot detect OS"
    pretty = info.get("PRETTY_NAME", info.get("ID", "unknown"))
    distro = info.get("ID", "")
    version = info.get("VERSION_ID", "")
    if distro in SUPPORTED_RELEASES:
        if version in SUPPORTED_RELEASES[distro]:
            return True, pretty
        return False, f"Unsupported {distro.capitalize()} release: {version or 'unknown'}"
    if "debian" in info.get("ID_LIKE", "").split():
        return True, pretty
    return False, f"Unsupported OS: {pretty}"


# ----------------------------------------------------------------
# Cron
# ----------------------------------------------------------------
def read_crontab() -> List[str]:
    try:
        result = run_command(["crontab", "-l"], check=False)
    except OSError:
        return []
    if result.returncode != 0:
        return []
    return result.stdout.splitlines()


def write_crontab(lines: List[str]) -> None:
    content = "\n".join(lines) + "\n" if lines else ""
    subprocess.run(["crontab", "-"], input=content, text=True, check=True, capture_output=True)


def merge_cron_entry(existing: List[str], entry: Optional[str]) -> List[str]:
    """Drop previous autoheal entries and append the new one (if any)."""
    kept = [line for line in existing if CRON_MARKER not in line]
    if entry:
        kept.append(entry)
    return kept


# ----------------------------------------------------------------
# Install / Uninstall
# ----------------------------------------------------------------
def install(
    config: WatchdogConfig,
    spec: ScheduleSpec = ScheduleSpec(),
    scheduler: str = "systemd",
    exec_start: Optional[str] = None,
    systemd_dir: Path = SYSTEMD_DIR,
    config_file: Union[str, Path] = DEFAULT_CONFIG_FILE,
    runner: Callable[[List[str]], object] = run_command,
) -> InstallResult:
    """
    Install the scheduler entry that drives the watchdog.

    The JSON config file is written only when absent so local edits survive
    reinstalls. systemd is reloaded only if a unit file changed.
    """
    if scheduler not in ("systemd", "cron"):
        raise ValueError(f"Unknown scheduler: {scheduler}")
    exec_start = exec_start or default_exec_start()
    result = InstallResult(scheduler=scheduler)

    config_path = Path(config_file)
    if not config_path.exists():
        sync_file(ManagedFile(config_path, render_config(config), 0o600))
        result.changed.append(config_path)

    log_path = Path(config.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_path.touch(exist_ok=True)

    if scheduler == "systemd":
        for managed in systemd_files(spec, exec_start, systemd_dir):
            (result.changed if sync_file(managed) else result.unchanged).append(managed.path)
        commands = []
        if any(path.parent == systemd_dir for path in result.changed):
            commands = [["systemctl", "daemon-reload"], ["systemctl", "enable", "--now", spec.timer_name]]
        for cmd in commands:
            runner(cmd)
            result.commands.append(cmd)
    else:
        current = read_crontab()
        desired = merge_cron_entry(current, render_cron_line(spec, exec_start))
        if desired != current:
            write_crontab(desired)
            result.commands.append(["crontab", "-"])
    return result


def uninstall(
    spec: ScheduleSpec = ScheduleSpec(),
    systemd_dir: Path = SYSTEMD_DIR,
    runner: Callable[[List[str]], object] = run_command,
) -> List[Path]:
    """Remove the timer units and any cron entry. Returns removed unit files."""
    removed: List[Path] = []
    timer = systemd_dir / spec.timer_name
    if timer.exists():
        try:
            runner(["systemctl", "disable", "--now", spec.timer_name])
        except (subprocess.SubprocessError, OSError) as e:
            logger.warning(f"Could not disable {spec.timer_name}: {e}")
    for path in (timer, systemd_dir / spec.service_name):
        if path.exists():
            path.unlink()
            removed.append(path)
    if removed:
        runner(["systemctl", "daemon-reload"])
    current = read_crontab()
    desired = merge_cron_entry(current, None)
    if desired != current:
        write_crontab(desired)
    return removed
