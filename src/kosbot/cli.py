# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import asyncio
import sys
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from kosbot.autopilot import CrashAvoidanceOptions, ExecuteNodeOptions, crash_avoidance, execute_node
from kosbot.core.menu import CpuSelector
from kosbot.core.progress import ProgressChannel, ProgressEvent
from kosbot.core.session_manager import SessionManager
from kosbot.daemon import DaemonClient, DaemonRequest, DaemonResponse, ensure_daemon_running, is_daemon_running, run_daemon
from kosbot.errors import KosError
from kosbot.logging import configure_logging
from kosbot.paths import daemon_log_path
from kosbot.settings import Settings

console = Console()
err_console = Console(stderr=True)


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _print_response(response: DaemonResponse) -> None:
    if response.output:
        console.print(response.output, markup=False, highlight=False)
    if not response.success:
        err_console.print(f"[red]{response.error or 'failed'}[/red]")
        sys.exit(1)


def _print_progress(event: ProgressEvent) -> None:
    details = " ".join(f"{k}={v:.1f}" if isinstance(v, float) else f"{k}={v}" for k, v in event.data.items())
    err_console.print(f"[dim]{event.stage:>10}[/dim] {event.message} [dim]{details}[/dim]")


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--host", default=None, help="kOS telnet host (default from KOSBOT_HOST).")
@click.option("--port", type=int, default=None, help="kOS telnet port (default from KOSBOT_PORT).")
@click.option("--transport", type=click.Choice(["telnet", "tmux"]), default=None)
@click.option("--cpu-id", type=int, default=None, help="CPU number from the kOS menu.")
@click.option("--label", "cpu_label", default=None, help="CPU tag (case-insensitive substring).")
@click.option("--trace/--no-trace", default=None, help="Record the wire exchange to a JSONL file.")
@click.option("--log-level", default=None)
@click.pass_context
def cli(ctx: click.Context, **overrides: Any) -> None:
    """kosbot command line interface."""
    settings = Settings(**{k: v for k, v in overrides.items() if v is not None})
    configure_logging(settings)
    ctx.obj = {"settings": settings}


@cli.command("daemon")
@click.option("--log-to-file", is_flag=True, help="Write JSON logs to the runtime directory instead of stderr.")
@click.pass_context
def daemon(ctx: click.Context, log_to_file: bool) -> None:
    """Run the background daemon in the foreground."""
    settings = _settings(ctx)
    if log_to_file:
        configure_logging(settings, log_file=daemon_log_path(settings.runtime_dir))
    try:
        asyncio.run(run_daemon(settings))
    except RuntimeError as e:
        err_console.print(f"[red]{e}[/red]")
        sys.exit(1)


@cli.command("ping")
@click.pass_context
def ping(ctx: click.Context) -> None:
    """Ping the daemon, starting it if needed."""

    async def _run() -> None:
        client = await ensure_daemon_running(_settings(ctx))
        _print_response(await client.request(DaemonRequest(type="ping")))

    _run_or_exit(_run())


@cli.command("connect")
@click.pass_context
def connect(ctx: click.Context) -> None:
    """Attach the daemon to a CPU."""
    settings = _settings(ctx)

    async def _run() -> None:
        client = await ensure_daemon_running(settings)
        response = await client.connect(settings.cpu_id, settings.cpu_label)
        if response.success:
            console.print(f"[green]Connected[/green] to CPU {response.cpu_id} ({response.cpu_label}) on {response.vessel}")
        _print_response(response)

    _run_or_exit(_run())


@cli.command("disconnect")
@click.pass_context
def disconnect(ctx: click.Context) -> None:
    """Detach the daemon from its CPU."""
    _run_or_exit(_with_running_daemon(ctx, lambda client: client.disconnect()))


@cli.command("exec")
@click.argument("command")
@click.option("--timeout-ms", type=int, default=None, help="Command timeout (default from settings).")
@click.option("--detach", is_flag=True, help="Send without waiting (for commands that reset the CPU).")
@click.pass_context
def exec_command(ctx: click.Context, command: str, timeout_ms: int | None, detach: bool) -> None:
    """Execute a kOS command through the daemon."""

    async def _run() -> None:
        client = await ensure_daemon_running(_settings(ctx))
        _print_response(await client.execute(command, timeout_ms, detach=detach))

    _run_or_exit(_run())


@cli.command("status")
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show daemon connection status."""

    async def _run(client: DaemonClient) -> DaemonResponse:
        response = await client.status()
        table = Table(show_header=False)
        table.add_row("connected", str(response.connected))
        table.add_row("vessel", response.vessel or "-")
        table.add_row("cpu", f"{response.cpu_id} ({response.cpu_label or '-'})" if response.cpu_id else "-")
        table.add_row("monitor", response.output or "-")
        console.print(table)
        return response.model_copy(update={"output": None})

    _run_or_exit(_with_running_daemon(ctx, _run))


@cli.command("shutdown")
@click.pass_context
def shutdown(ctx: click.Context) -> None:
    """Stop the daemon."""
    _run_or_exit(_with_running_daemon(ctx, lambda client: client.shutdown()))


@cli.command("cpus")
@click.pass_context
def cpus(ctx: click.Context) -> None:
    """List CPUs offered by the kOS menu."""

    async def _run() -> None:
        entries = await SessionManager(_settings(ctx)).list_cpus()
        table = Table("#", "Vessel", "Part", "Label", "GUI", "Telnets")
        for entry in entries:
            table.add_row(
                str(entry.id), entry.vessel, entry.part, entry.label or "", str(entry.gui_open), str(entry.telnet_count)
            )
        console.print(table)

    _run_or_exit(_run())


@cli.command("execute-node")
@click.option("--timeout-ms", type=int, default=600_000, show_default=True)
@click.option("--poll-interval", type=float, default=10.0, show_default=True, help="Seconds between burn polls.")
@click.option("--half-burn-correction/--no-half-burn-correction", default=None, help="Default from settings.")
@click.option("--no-wait", is_flag=True, help="Return once the executor is enabled.")
@click.pass_context
def execute_node_command(
    ctx: click.Context,
    timeout_ms: int,
    poll_interval: float,
    half_burn_correction: bool | None,
    no_wait: bool,
) -> None:
    """Execute the next maneuver node."""
    settings = _settings(ctx)
    options = ExecuteNodeOptions(
        timeout_ms=timeout_ms,
        poll_interval_s=poll_interval,
        half_burn_correction=settings.half_burn_correction if half_burn_correction is None else half_burn_correction,
        wait_for_completion=not no_wait,
    )

    async def _run() -> None:
        manager = SessionManager(settings)
        progress = ProgressChannel()
        progress.add_listener(_print_progress)
        await manager.connect(CpuSelector(cpu_id=settings.cpu_id, label=settings.cpu_label))
        try:
            result = await execute_node(manager, options, progress)
        finally:
            await manager.disconnect()
        if not result.success:
            err_console.print(f"[red]{result.error}[/red]")
            sys.exit(1)
        console.print(f"[green]Node executed[/green] in {result.attempts} attempt(s)")

    _run_or_exit(_run())


@cli.command("crash-avoidance")
@click.option("--target-periapsis", type=float, default=10_000.0, show_default=True)
@click.option("--timeout-ms", type=int, default=300_000, show_default=True)
@click.pass_context
def crash_avoidance_command(ctx: click.Context, target_periapsis: float, timeout_ms: int) -> None:
    """Burn radial-out until periapsis is safe."""
    settings = _settings(ctx)
    options = CrashAvoidanceOptions(
        target_periapsis=target_periapsis,
        timeout_ms=timeout_ms,
        execute_node=ExecuteNodeOptions(half_burn_correction=settings.half_burn_correction),
    )

    async def _run() -> None:
        manager = SessionManager(settings)
        progress = ProgressChannel()
        progress.add_listener(_print_progress)
        await manager.connect()
        try:
            result = await crash_avoidance(manager, options, progress)
        finally:
            await manager.disconnect()
        if not result.success:
            err_console.print(f"[red]{result.error}[/red]")
            sys.exit(1)
        console.print(
            f"[green]Crash avoided[/green]: Pe {result.initial_periapsis:.0f}m -> {result.final_periapsis:.0f}m, "
            f"dV used {result.delta_v_used:.1f} m/s, stages {result.stages_used}"
        )

    _run_or_exit(_run())


async def _with_running_daemon(ctx: click.Context, action: Any) -> None:
    settings = _settings(ctx)
    if not is_daemon_running(settings):
        err_console.print("[yellow]Daemon is not running[/yellow]")
        sys.exit(1)
    response = await action(DaemonClient(settings=settings))
    _print_response(response)


def _run_or_exit(coro: Any) -> None:
    try:
        asyncio.run(coro)
    except KosError as e:
        err_console.print(f"[red]{e}[/red]")
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
