"""
System remediation actions.

Every action is best-effort: failures are logged and reported through the
return value, never raised, so one failing step cannot abort the ladder.
"""

import logging
import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from typing import Iterable, List, Optional

import psutil

logger = logging.getLogger("vps_autoheal")

OPERATION_TIMEOUT = 60  # seconds
DROP_CACHES_PATH = "/proc/sys/vm/drop_caches"


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    name: str
    rss: int


def run_command(
    cmd: List[str],
    check: bool = True,
    capture_output: bool = True,
    timeout: int = OPERATION_TIMEOUT,
) -> subprocess.CompletedProcess:
    """
    Executes a system command and returns the CompletedProcess.

    Raises:
        subprocess.CalledProcessError: If the command returns a non-zero exit code
        subprocess.TimeoutExpired: If the command times out
        FileNotFoundError: If the executable does not exist
    """
    logger.debug(f"Running command: {' '.join(cmd)}")
    return subprocess.run(
        cmd,
        check=check,
        text=True,
        capture_output=capture_output,
        timeout=timeout,
    )


class SystemActions:
    """Talks to the kernel, systemd, MariaDB and the process table."""

    def __init__(self, dry_run: bool = False) -> None:
        self.dry_run = dry_run

    def _run(self, cmd: List[str], timeout: int = OPERATION_TIMEOUT) -> bool:
        if self.dry_run:
            logger.info(f"[dry-run] {' '.join(cmd)}")
            return True
        try:
            run_command(cmd, timeout=timeout)
            return True
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            logger.warning(f"Command failed ({e.returncode}): {' '.join(cmd)} {stderr}".rstrip())
        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out after {timeout} seconds: {' '.join(cmd)}")
        except OSError as e:
            logger.warning(f"Could not execute {cmd[0]}: {e}")
        return False

    # ------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------
    @staticmethod
    def missing_commands(names: Iterable[str]) -> List[str]:
        """Return the names that are not on PATH."""
        return [name for name in names if shutil.which(name) is None]

    def detect_service(self, pattern: str) -> Optional[str]:
        """Return the first loaded systemd service whose unit name matches pattern."""
        try:
            result = run_command(["systemctl", "list-units", "--type=service", "--no-legend", "--plain"])
        except (subprocess.SubprocessError, OSError) as e:
            logger.warning(f"Could not list systemd services: {e}")
            return None
        regex = re.compile(pattern)
        for line in result.stdout.splitlines():
            parts = line.split()
            if not parts:
                continue
            unit = parts[0].lstrip("●*").strip()
            if not unit:
                continue
            name = unit[: -len(".service")] if unit.endswith(".service") else unit
            if regex.search(name):
                return name
        return None

    # ------------------------------------------------------------
    # Remediation
    # ------------------------------------------------------------
    def drop_caches(self) -> bool:
        """Flush dirty pages and drop the page cache, dentries and inodes."""
        if self.dry_run:
            logger.info(f"[dry-run] sync && echo 3 > {DROP_CACHES_PATH}")
            return True
        os.sync()
        try:
            with open(DROP_CACHES_PATH, "w") as f:
                f.write("3\n")
            return True
        except OSError as e:
            logger.debug(f"Writing {DROP_CACHES_PATH} failed ({e}); trying sysctl")
        return self._run(["sysctl", "-w", "vm.drop_caches=3"])

    def reload_service(self, name: str) -> bool:
        return self._run(["systemctl", "reload", name])

    def restart_service(self, name: str) -> bool:
        """Restart a systemd unit; failures are logged and return False."""
        return self._run(["systemctl", "restart", name])

    def flush_database(self) -> bool:
        """Flush table and log buffers through mysqladmin. True only if both succeed."""
        tables = self._run(["mysqladmin", "flush-tables"])
        logs = self._run(["mysqladmin", "flush-logs"])
        return tables and logs

    def heaviest_process(self, pattern: Optional[str] = None) -> Optional[ProcessInfo]:
        """Find the process holding the most resident memory."""
        regex = re.compile(pattern) if pattern else None
        skip = {0, 1, os.getpid(), os.getppid()}
        heaviest: Optional[ProcessInfo] = None
        for proc in psutil.process_iter(["pid", "name", "memory_info"]):
            try:
                info = proc.info
                if info["pid"] in skip or info["memory_info"] is None:
                    continue
                name = info["name"] or ""
                if regex and not regex.search(name):
                    continue
                rss = info["memory_info"].rss
                if heaviest is None or rss > heaviest.rss:
                    heaviest = ProcessInfo(pid=info["pid"], name=name, rss=rss)
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return heaviest

    def terminate_process(self, pid: int, grace_seconds: float) -> bool:
        """Send SIGTERM, then SIGKILL if the process outlives the grace period."""
        if self.dry_run:
            logger.info(f"[dry-run] kill {pid} (SIGKILL after {grace_seconds:g}s)")
            return True
        try:
            proc = psutil.Process(pid)
            proc.terminate()
            try:
                proc.wait(timeout=grace_seconds)
                return True
            except psutil.TimeoutExpired:
                logger.warning(f"PID {pid} ignored SIGTERM; sending SIGKILL")
                proc.kill()
                proc.wait(timeout=grace_seconds)
                return True
        except psutil.NoSuchProcess:
            return True
        except (psutil.AccessDenied, psutil.TimeoutExpired) as e:
            logger.warning(f"Could not terminate PID {pid}: {e}")
            return False

    def reboot(self) -> bool:
        """Request an immediate forced reboot."""
        return self._run(["systemctl", "reboot", "--force"])
