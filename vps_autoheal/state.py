"""
Cooldown state.

The only state that survives between invocations is the Unix timestamp of
the last remediation. It lives behind a small storage interface so the
watchdog can run against a file, an in-memory value in tests, or any other
key-value backend.
"""

import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Union

logger = logging.getLogger("vps_autoheal")


class StateStore(ABC):
    """Persists the timestamp of the last remediation action."""

    @abstractmethod
    def read(self) -> Optional[int]:
        """Return the stored timestamp, or None when nothing is stored."""

    @abstractmethod
    def write(self, timestamp: int) -> None:
        """Overwrite the stored timestamp."""


class FileStateStore(StateStore):
    """Stores the timestamp as a decimal string in a single file."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def read(self) -> Optional[int]:
        try:
            raw = self.path.read_text().strip()
        except FileNotFoundError:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Ignoring unreadable state file {self.path}: {raw!r}")
            return None

    def write(self, timestamp: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(f"{int(timestamp)}\n")
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


class MemoryStateStore(StateStore):
    def __init__(self, timestamp: Optional[int] = None) -> None:
        self.timestamp = timestamp
        self.writes = 0

    def read(self) -> Optional[int]:
        return self.timestamp

    def write(self, timestamp: int) -> None:
        self.timestamp = int(timestamp)
        self.writes += 1


class CooldownGate:
    """Suppresses remediation while the previous action is within the window."""

    def __init__(self, store: StateStore, window_seconds: int, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.window_seconds = window_seconds
        self.clock = clock
        self._last: Optional[int] = None
        self._loaded = False

    @property
    def last_action(self) -> Optional[int]:
        if not self._loaded:
            self._last = self.store.read()
            self._loaded = True
        return self._last

    def remaining(self) -> float:
        """Seconds until the window closes (0 when inactive)."""
        if self.last_action is None:
            return 0.0
        return max(0.0, self.window_seconds - (self.clock() - self.last_action))

    def is_cooldown_active(self) -> bool:
        if self.last_action is None:
            return False
        return (self.clock() - self.last_action) < self.window_seconds

    def mark(self, now: Optional[float] = None) -> int:
        timestamp = int(self.clock() if now is None else now)
        self.store.write(timestamp)
        self._last = timestamp
        self._loaded = True
        return timestamp
