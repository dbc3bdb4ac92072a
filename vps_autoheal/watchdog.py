"""
Single watchdog invocation.

A run samples metrics, records them in the audit log, honours the cooldown
gate, walks the escalation ladder and finally stamps the cooldown state when
anything fired. All collaborators are passed in through RunContext so the
whole run can be exercised with a fake clock and fake system actions.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .actions import SystemActions
from .config import WatchdogConfig
from .ladder import EscalationLadder, LadderContext
from .metrics import MetricSampler, MetricSnapshot, format_snapshot
from .state import CooldownGate, FileStateStore, StateStore

logger = logging.getLogger("vps_autoheal")


@dataclass
class RunContext:
    config: WatchdogConfig
    sampler: MetricSampler
    actions: SystemActions
    store: StateStore
    audit: logging.Logger
    clock: Callable[[], float] = time.time
    sleep: Callable[[float], None] = time.sleep
    ladder: EscalationLadder = field(default_factory=EscalationLadder)

    @classmethod
    def from_config(cls, config: WatchdogConfig, audit: logging.Logger) -> "RunContext":
        return cls(
            config=config,
            sampler=MetricSampler(),
            actions=SystemActions(dry_run=config.dry_run),
            store=FileStateStore(config.state_file),
            audit=audit,
        )


@dataclass
class RunReport:
    snapshot: Optional[MetricSnapshot] = None
    final: Optional[MetricSnapshot] = None
    skipped: Optional[str] = None
    fired: List[str] = field(default_factory=list)
    cooldown_marked: Optional[int] = None
    rebooting: bool = False

    @property
    def acted(self) -> bool:
        return bool(self.fired)


def run_once(ctx: RunContext) -> RunReport:
    """Execute one watchdog cycle and return what happened."""
    report = RunReport()
    config = ctx.config

    missing = ctx.actions.missing_commands(config.required_commands)
    if missing:
        logger.warning(f"Required command(s) not found: {', '.join(missing)}; exiting without action")
        report.skipped = "missing-dependency"
        return report

    snapshot = ctx.sampler.sample()
    report.snapshot = snapshot
    ctx.audit.info(format_snapshot(snapshot))

    gate = CooldownGate(ctx.store, config.cooldown_seconds, ctx.clock)
    if gate.is_cooldown_active():
        logger.info(f"Cooldown active ({gate.remaining():.0f}s left); skipping actions")
        report.skipped = "cooldown"
        report.final = snapshot
        return report

    def mark_cooldown() -> None:
        if config.dry_run:
            logger.info("[dry-run] cooldown state left untouched")
            return
        report.cooldown_marked = gate.mark()

    ladder_ctx = LadderContext(
        config=config,
        sampler=ctx.sampler,
        actions=ctx.actions,
        audit=ctx.audit,
        snapshot=snapshot,
        sleep=ctx.sleep,
        before_terminal=mark_cooldown,
    )
    result = ctx.ladder.run(ladder_ctx)
    report.fired = list(result.fired)
    report.final = result.final
    report.rebooting = result.terminal

    if result.acted and report.cooldown_marked is None:
        mark_cooldown()
    if not result.acted:
        logger.debug(f"No thresholds crossed ({format_snapshot(snapshot)})")
    return report
