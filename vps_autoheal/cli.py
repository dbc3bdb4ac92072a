#!/usr/bin/env python3
"""
VPS Auto-Heal CLI

Usage:
  vps-autoheal run            # one watchdog cycle (used by the timer/cron)
  vps-autoheal status         # current metrics against thresholds
  vps-autoheal install        # install systemd timer (or --scheduler cron)
  vps-autoheal uninstall
  vps-autoheal render         # print the generated units without writing

Note: run, install and uninstall require root privileges.
"""

import logging
import os
import sys
from dataclasses import replace
from datetime import datetime
from typing import Optional

import click
import pyfiglet
from rich import box
from rich.panel import Panel
from rich.table import Table

from . import APP_NAME, VERSION
from .actions import SystemActions
from .config import ConfigError, WatchdogConfig, load_config
from .installer import (
    ScheduleSpec,
    check_os,
    default_exec_start,
    install,
    render_cron_line,
    render_service,
    render_timer,
    uninstall,
)
from .log import close_audit_logger, console, setup_audit_logger, setup_logger
from .metrics import MetricSampler, MetricSnapshot
from .state import CooldownGate, FileStateStore
from .watchdog import RunContext, run_once

logger = logging.getLogger("vps_autoheal")


# ----------------------------------------------------------------
# Output helpers
# ----------------------------------------------------------------
def print_header(text: str) -> None:
    """Print a figlet banner in the frost accent colour."""
    ascii_art = pyfiglet.figlet_format(text, font="slant")
    console.print(ascii_art, style="bold #88C0D0")


def print_success(text: str) -> None:
    """Print a green check-marked message."""
    console.print(f"[bold #A3BE8C]✓ {text}[/bold #A3BE8C]")


def print_warning(text: str) -> None:
    """Print a yellow warning."""
    console.print(f"[bold #EBCB8B]⚠ {text}[/bold #EBCB8B]")


def print_error(text: str) -> None:
    """Print a red error message."""
    console.print(f"[bold #BF616A]✗ {text}[/bold #BF616A]")


def require_root() -> None:
    """Exit with status 1 unless running as root."""
    if os.geteuid() != 0:
        print_error("This command requires root privileges. Please run with sudo.")
        sys.exit(1)


def _level_style(value: float, warn: float, crit: float) -> str:
    if value >= crit:
        return "bold #BF616A"
    if value >= warn:
        return "#EBCB8B"
    return "#A3BE8C"


def build_status_table(snapshot: MetricSnapshot, config: WatchdogConfig) -> Table:
    t = config.thresholds
    table = Table(title="Memory Pressure", box=box.ROUNDED, header_style="bold #88C0D0")
    table.add_column("Metric")
    table.add_column("Current", justify="right")
    table.add_column("Warn", justify="right")
    table.add_column("Critical", justify="right")
    table.add_column("Emergency", justify="right")
    table.add_row(
        "RAM",
        f"[{_level_style(snapshot.ram_used_pct, t.ram_warn, t.ram_crit)}]{snapshot.ram_used_pct}%[/]",
        f"{t.ram_warn}%",
        f"{t.ram_crit}%",
        f"{t.ram_emerg}% / {t.ram_meltdown}%",
    )
    table.add_row(
        "Swap",
        f"[{_level_style(snapshot.swap_used_pct, t.swap_warn, t.swap_crit)}]{snapshot.swap_used_pct}%[/]",
        f"{t.swap_warn}%",
        f"{t.swap_crit}%",
        "-",
    )
    table.add_row(
        "Load (1m)",
        f"[{_level_style(snapshot.load_avg, t.load_warn, t.load_crit)}]{snapshot.load_avg:.2f}[/]",
        f"> {t.load_warn:.2f}",
        f"> {t.load_crit:.2f}",
        "-",
    )
    return table


# ----------------------------------------------------------------
# Commands
# ----------------------------------------------------------------
@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None, help="JSON configuration file.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug output.")
@click.version_option(VERSION, prog_name=APP_NAME)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], verbose: bool) -> None:
    """Memory-pressure watchdog with tiered self-healing."""
    setup_logger(verbose)
    try:
        ctx.obj = load_config(config_path)
    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        sys.exit(2)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Log intended actions without executing them.")
@click.pass_obj
def run(config: WatchdogConfig, dry_run: bool) -> None:
    """Run one watchdog cycle."""
    if dry_run and not config.dry_run:
        config = replace(config, dry_run=True)
    if not config.dry_run:
        require_root()
    try:
        audit = setup_audit_logger(config.log_file)
    except OSError as e:
        print_error(f"Cannot open log file {config.log_file}: {e}")
        sys.exit(1)
    try:
        report = run_once(RunContext.from_config(config, audit))
    finally:
        close_audit_logger()
    if report.fired:
        logger.info(f"Tiers fired: {', '.join(report.fired)}")


@cli.command()
@click.pass_obj
def status(config: WatchdogConfig) -> None:
    """Show current metrics, thresholds and cooldown state."""
    print_header("AutoHeal")
    snapshot = MetricSampler().sample()
    console.print(build_status_table(snapshot, config))

    gate = CooldownGate(FileStateStore(config.state_file), config.cooldown_seconds)
    if gate.last_action is None:
        cooldown = "no remediation recorded"
    else:
        when = datetime.fromtimestamp(gate.last_action).strftime("%Y-%m-%d %H:%M:%S")
        state = f"active, {gate.remaining():.0f}s left" if gate.is_cooldown_active() else "inactive"
        cooldown = f"last action {when} ({state})"

    actions = SystemActions(dry_run=True)
    app = actions.detect_service(config.services.app_pattern) or "[dim]not found[/dim]"
    db = actions.detect_service(config.services.db_pattern) or "[dim]not found[/dim]"
    supported, os_name = check_os()
    details = (
        f"Cooldown: {cooldown}\n"
        f"App service: {app}\n"
        f"Database service: {db}\n"
        f"OS: {os_name}{'' if supported else ' [#BF616A](unsupported)[/]'}\n"
        f"Log file: {config.log_file}"
    )
    console.print(Panel(details, title="State", border_style="#88C0D0", box=box.ROUNDED))


@cli.command("install")
@click.option("--scheduler", type=click.Choice(["systemd", "cron"]), default="systemd", show_default=True)
@click.option("--interval", type=click.IntRange(1, 59), default=None, help="Minutes between runs.")
@click.option("--force", is_flag=True, help="Install even on an unsupported OS.")
@click.pass_obj
def install_cmd(config: WatchdogConfig, scheduler: str, interval: Optional[int], force: bool) -> None:
    """Install the timer (or cron entry) that runs the watchdog."""
    print_header("AutoHeal")
    require_root()
    supported, os_name = check_os()
    if not supported and not force:
        print_error(os_name)
        sys.exit(1)
    print_success(f"OS: {os_name}")
    if interval is None:
        interval = 2 if scheduler == "systemd" else 5
    result = install(config, ScheduleSpec(interval_minutes=interval), scheduler=scheduler)
    for path in result.changed:
        print_success(f"Updated {path}")
    for path in result.unchanged:
        console.print(f"[dim]Unchanged {path}[/dim]")
    print_success(f"Scheduler: {scheduler}, every {interval} minutes")
    print_success(f"Log file: {config.log_file}")


@cli.command("uninstall")
def uninstall_cmd() -> None:
    """Remove the timer units and cron entry."""
    require_root()
    removed = uninstall()
    for path in removed:
        print_success(f"Removed {path}")
    if not removed:
        print_warning("No systemd units were installed.")


@cli.command()
@click.option("--interval", type=click.IntRange(1, 59), default=2, show_default=True)
def render(interval: int) -> None:
    """Print the generated scheduler files."""
    spec = ScheduleSpec(interval_minutes=interval)
    exec_start = default_exec_start()
    click.echo(f"# {spec.service_name}")
    click.echo(render_service(spec, exec_start))
    click.echo(f"# {spec.timer_name}")
    click.echo(render_timer(spec))
    click.echo("# crontab")
    click.echo(render_cron_line(spec, exec_start))


def main() -> None:
    try:
        cli(prog_name="vps-autoheal")
    except KeyboardInterrupt:
        print_warning("Operation cancelled by user.")
        sys.exit(130)


if __name__ == "__main__":
    main()
