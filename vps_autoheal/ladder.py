"""
Escalation ladder.

The ladder is an ordered list of (predicate, action) tiers evaluated once per
run by a small interpreter loop. Each tier checks the freshest snapshot, so a
tier only fires when the pressure survived everything before it. Tiers are
independent checks: several may fire in one run, always in increasing
severity, and a terminal tier (reboot) ends the run.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .actions import SystemActions
from .config import Thresholds, WatchdogConfig
from .metrics import MetricSampler, MetricSnapshot, format_snapshot

logger = logging.getLogger("vps_autoheal")

Predicate = Callable[[MetricSnapshot, Thresholds], Optional[str]]


@dataclass
class LadderContext:
    """Everything a tier action may touch during one run."""

    config: WatchdogConfig
    sampler: MetricSampler
    actions: SystemActions
    audit: logging.Logger
    snapshot: MetricSnapshot
    sleep: Callable[[float], None] = time.sleep
    before_terminal: Optional[Callable[[], None]] = None
    _app_service: Optional[str] = field(default=None, repr=False)
    _app_resolved: bool = field(default=False, repr=False)

    @property
    def thresholds(self) -> Thresholds:
        return self.config.thresholds

    def resample(self) -> MetricSnapshot:
        self.snapshot = self.sampler.sample()
        return self.snapshot

    def wait(self, seconds: float) -> None:
        if seconds > 0:
            self.sleep(seconds)

    def app_service(self) -> Optional[str]:
        if not self._app_resolved:
            services = self.config.services
            name = self.actions.detect_service(services.app_pattern)
            if name is None and services.use_app_fallback:
                name = services.app_fallback
            self._app_service = name
            self._app_resolved = True
        return self._app_service


@dataclass(frozen=True)
class Tier:
    name: str
    severity: int
    predicate: Predicate
    action: Callable[[LadderContext], None]
    terminal: bool = False


@dataclass
class LadderResult:
    fired: List[str] = field(default_factory=list)
    final: Optional[MetricSnapshot] = None
    terminal: bool = False

    @property
    def acted(self) -> bool:
        return bool(self.fired)


# ----------------------------------------------------------------
# Predicates
# ----------------------------------------------------------------
def _reasons(*checks: Optional[str]) -> Optional[str]:
    hits = [check for check in checks if check]
    return ", ".join(hits) if hits else None


def _at_least(label: str, value: int, limit: int) -> Optional[str]:
    return f"{label} {value}% >= {limit}%" if value >= limit else None


def _load_above(value: float, limit: float) -> Optional[str]:
    return f"LOAD {value:.2f} > {limit:.2f}" if value > limit else None


def warn_triggered(s: MetricSnapshot, t: Thresholds) -> Optional[str]:
    """Any of RAM, swap or load at its warning level. Returns the reason or None."""
    return _reasons(
        _at_least("RAM", s.ram_used_pct, t.ram_warn),
        _at_least("SWAP", s.swap_used_pct, t.swap_warn),
        _load_above(s.load_avg, t.load_warn),
    )


def critical_triggered(s: MetricSnapshot, t: Thresholds) -> Optional[str]:
    return _reasons(
        _at_least("RAM", s.ram_used_pct, t.ram_crit),
        _at_least("SWAP", s.swap_used_pct, t.swap_crit),
        _load_above(s.load_avg, t.load_crit),
    )


def database_triggered(s: MetricSnapshot, t: Thresholds) -> Optional[str]:
    """RAM critical while swap is already in use past its warning level."""
    ram = _at_least("RAM", s.ram_used_pct, t.ram_crit)
    swap = _at_least("SWAP", s.swap_used_pct, t.swap_warn)
    return f"{ram} and {swap}" if ram and swap else None


def emergency_triggered(s: MetricSnapshot, t: Thresholds) -> Optional[str]:
    return _at_least("RAM", s.ram_used_pct, t.ram_emerg)


def meltdown_triggered(s: MetricSnapshot, t: Thresholds) -> Optional[str]:
    # Last resort: the host reboots.
    return _at_least("RAM", s.ram_used_pct, t.ram_meltdown)


# ----------------------------------------------------------------
# Actions
# ----------------------------------------------------------------
def drop_caches(ctx: LadderContext) -> None:
    ctx.audit.info("Warning: dropping caches")
    if not ctx.actions.drop_caches():
        ctx.audit.info("Cache drop failed")
    ctx.wait(ctx.config.delays.cache_drop)


def restart_app_server(ctx: LadderContext) -> None:
    delays = ctx.config.delays
    crit = ctx.thresholds.ram_crit
    service = ctx.app_service()
    if service is None:
        ctx.audit.info("Critical: no application service found, skipping restart")
    else:
        ctx.audit.info(f"Critical: reloading {service}")
        ctx.actions.reload_service(service)
        ctx.wait(delays.app_restart)
        if ctx.resample().ram_used_pct >= crit:
            ctx.audit.info(f"Critical: RAM still {ctx.snapshot.ram_used_pct}%, restarting {service}")
            ctx.actions.restart_service(service)
            ctx.wait(delays.app_restart)

    web = ctx.config.services.web_service
    if web and ctx.resample().ram_used_pct >= crit:
        ctx.audit.info(f"Critical: RAM still {ctx.snapshot.ram_used_pct}%, restarting {web}")
        ctx.actions.restart_service(web)
        ctx.wait(delays.web_restart)


def protect_database(ctx: LadderContext) -> None:
    delays = ctx.config.delays
    services = ctx.config.services
    ctx.audit.info("Database protection: flushing tables and logs")
    ctx.actions.flush_database()
    ctx.wait(delays.db_flush)
    ram_after = ctx.resample().ram_used_pct
    if ram_after < ctx.thresholds.ram_crit:
        return
    db = ctx.actions.detect_service(services.db_pattern) or services.db_service
    ctx.audit.info(f"Database protection: RAM still {ram_after}%, restarting {db}")
    ctx.actions.restart_service(db)
    ctx.wait(delays.db_restart)


def kill_heaviest_process(ctx: LadderContext) -> None:
    delays = ctx.config.delays
    victim = ctx.actions.heaviest_process(ctx.config.services.emergency_kill_pattern)
    if victim is None:
        ctx.audit.info("Emergency: no process eligible for termination")
        return
    ctx.audit.info(f"Emergency: killing PID {victim.pid} ({victim.name}, {victim.rss // (1024 * 1024)} MiB RSS)")
    if not ctx.actions.terminate_process(victim.pid, delays.kill_grace):
        ctx.audit.info(f"Emergency: PID {victim.pid} could not be terminated")
    ctx.wait(delays.post_kill)


def force_reboot(ctx: LadderContext) -> None:
    ctx.audit.info("Meltdown: forcing system reboot")
    if ctx.before_terminal is not None:
        ctx.before_terminal()
    if not ctx.actions.reboot():
        ctx.audit.info("Meltdown: reboot request failed")


def build_ladder() -> List[Tier]:
    """Return the default five tiers in increasing severity."""
    return [
        Tier("warn", 1, warn_triggered, drop_caches),
        Tier("critical", 2, critical_triggered, restart_app_server),
        Tier("database", 3, database_triggered, protect_database),
        Tier("emergency", 4, emergency_triggered, kill_heaviest_process),
        Tier("meltdown", 5, meltdown_triggered, force_reboot, terminal=True),
    ]


class EscalationLadder:
    def __init__(self, tiers: Optional[List[Tier]] = None) -> None:
        self.tiers = sorted(tiers if tiers is not None else build_ladder(), key=lambda tier: tier.severity)

    def run(self, ctx: LadderContext) -> LadderResult:
        result = LadderResult(final=ctx.snapshot)
        for tier in self.tiers:
            reason = tier.predicate(ctx.snapshot, ctx.thresholds)
            if reason is None:
                continue
            logger.info(f"Tier '{tier.name}' triggered: {reason}")
            ctx.audit.info(f"Tier {tier.name} triggered ({reason})")
            tier.action(ctx)
            result.fired.append(tier.name)
            if tier.terminal:
                result.terminal = True
                result.final = ctx.snapshot
                return result
            ctx.resample()
            ctx.audit.info(f"After {tier.name}: {format_snapshot(ctx.snapshot)}")
        result.final = ctx.snapshot
        return result
