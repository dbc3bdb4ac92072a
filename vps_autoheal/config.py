"""
Configuration for the auto-heal watchdog.

Defaults mirror the tiered profile used on production hosts (75/85/92/95).
A JSON file may override any subset of fields; environment variables
prefixed with ``AUTOHEAL_`` override the file.
"""

import json
import os
import re
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

DEFAULT_CONFIG_FILE = "/etc/enterprise-autoheal.json"
ENV_PREFIX = "AUTOHEAL_"


class ConfigError(ValueError):
    """Raised when the watchdog configuration is malformed."""


# ----------------------------------------------------------------
# Configuration Sections
# ----------------------------------------------------------------
@dataclass(frozen=True)
class Thresholds:
    """Percent thresholds for RAM/swap and absolute 1-minute load limits."""

    ram_warn: int = 75
    ram_crit: int = 85
    ram_emerg: int = 92
    ram_meltdown: int = 95
    swap_warn: int = 30
    swap_crit: int = 50
    load_warn: float = 2.0
    load_crit: float = 4.0

    def validate(self) -> None:
        ram = [self.ram_warn, self.ram_crit, self.ram_emerg, self.ram_meltdown]
        if any(not 0 <= value <= 100 for value in ram + [self.swap_warn, self.swap_crit]):
            raise ConfigError("Percent thresholds must be between 0 and 100")
        if ram != sorted(ram):
            raise ConfigError(
                "RAM thresholds must satisfy warn <= crit <= emerg <= meltdown, "
                f"got {self.ram_warn}/{self.ram_crit}/{self.ram_emerg}/{self.ram_meltdown}"
            )
        if self.swap_warn > self.swap_crit:
            raise ConfigError(f"swap_warn ({self.swap_warn}) exceeds swap_crit ({self.swap_crit})")
        if self.load_warn < 0 or self.load_warn > self.load_crit:
            raise ConfigError(f"load_warn ({self.load_warn}) must be between 0 and load_crit ({self.load_crit})")


@dataclass(frozen=True)
class Delays:
    """Grace periods (seconds) waited after each remediation step."""

    cache_drop: float = 3.0
    app_restart: float = 5.0
    web_restart: float = 5.0
    db_flush: float = 3.0
    db_restart: float = 8.0
    kill_grace: float = 5.0
    post_kill: float = 3.0

    def validate(self) -> None:
        for item in fields(self):
            if getattr(self, item.name) < 0:
                raise ConfigError(f"Delay '{item.name}' cannot be negative")


@dataclass(frozen=True)
class Services:
    """How the application, web and database services are located at runtime."""

    app_pattern: str = r"php.*fpm"
    app_fallback: str = "php8.3-fpm"
    use_app_fallback: bool = False
    web_service: Optional[str] = "nginx"
    db_service: str = "mariadb"
    db_pattern: str = r"mariadb|mysql"
    emergency_kill_pattern: Optional[str] = None

    def validate(self) -> None:
        """Compile every service pattern so a bad regex fails at load time."""
        for name in ("app_pattern", "db_pattern", "emergency_kill_pattern"):
            pattern = getattr(self, name)
            if pattern is None:
                continue
            if not isinstance(pattern, str) or not pattern:
                raise ConfigError(f"Service pattern '{name}' must be a non-empty string")
            try:
                re.compile(pattern)
            except re.error as e:
                raise ConfigError(f"Invalid regex for '{name}' ({pattern!r}): {e}") from e


@dataclass(frozen=True)
class WatchdogConfig:
    thresholds: Thresholds = field(default_factory=Thresholds)
    delays: Delays = field(default_factory=Delays)
    services: Services = field(default_factory=Services)
    cooldown_seconds: int = 300
    log_file: str = "/var/log/enterprise-autoheal.log"
    state_file: str = "/var/run/enterprise-autoheal.state"
    required_commands: List[str] = field(default_factory=lambda: ["systemctl"])
    dry_run: bool = False

    def validate(self) -> "WatchdogConfig":
        self.thresholds.validate()
        self.delays.validate()
        self.services.validate()
        if self.cooldown_seconds < 0:
            raise ConfigError("cooldown_seconds cannot be negative")
        if not self.log_file or not self.state_file:
            raise ConfigError("log_file and state_file must be set")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ----------------------------------------------------------------
# Loading
# ----------------------------------------------------------------
def _build(cls: type, data: Dict[str, Any], section: str) -> Any:
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{section}' must be an object")
    known = {item.name: item for item in fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ConfigError(f"Unknown key(s) in '{section}': {', '.join(unknown)}")
    kwargs: Dict[str, Any] = {}
    for name, value in data.items():
        default = known[name].default_factory() if callable(known[name].default_factory) else known[name].default
        if is_dataclass(default):
            kwargs[name] = _build(type(default), value, name)
        else:
            kwargs[name] = value
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise ConfigError(f"Invalid '{section}' section: {e}") from e


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def apply_env_overrides(data: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Overlay AUTOHEAL_* environment variables onto a raw config mapping."""
    env = os.environ if environ is None else environ
    merged = dict(data)
    if f"{ENV_PREFIX}COOLDOWN" in env:
        try:
            merged["cooldown_seconds"] = int(env[f"{ENV_PREFIX}COOLDOWN"])
        except ValueError as e:
            raise ConfigError(f"{ENV_PREFIX}COOLDOWN must be an integer") from e
    if f"{ENV_PREFIX}LOG_FILE" in env:
        merged["log_file"] = env[f"{ENV_PREFIX}LOG_FILE"]
    if f"{ENV_PREFIX}STATE_FILE" in env:
        merged["state_file"] = env[f"{ENV_PREFIX}STATE_FILE"]
    if f"{ENV_PREFIX}DRY_RUN" in env:
        merged["dry_run"] = _parse_bool(env[f"{ENV_PREFIX}DRY_RUN"])
    return merged


def load_config(
    path: Optional[Union[str, Path]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> WatchdogConfig:
    """
    Load the watchdog configuration.

    Args:
        path: JSON file to read. When omitted, DEFAULT_CONFIG_FILE is used
            if it exists, otherwise built-in defaults apply.
        environ: Environment mapping used for overrides (defaults to os.environ).

    Returns:
        A validated, immutable WatchdogConfig.

    Raises:
        ConfigError: If the file cannot be parsed or values are invalid.
    """
    data: Dict[str, Any] = {}
    if path is None and Path(DEFAULT_CONFIG_FILE).is_file():
        path = DEFAULT_CONFIG_FILE
    if path is not None:
        config_path = Path(path)
        try:
            data = json.loads(config_path.read_text())
        except FileNotFoundError as e:
            raise ConfigError(f"Config file not found: {config_path}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{config_path} must contain a JSON object")
    data = apply_env_overrides(data, environ)
    return _build(WatchdogConfig, data, "root").validate()
