"""CLI command: gpuguard check <snapshot> — policy evaluation and enforcement."""

from __future__ import annotations

import json
import sys

import click
from rich.console import Console
from rich.table import Table

from gpuguard.cli.context import build_manager
from gpuguard.enforcement.models import CheckResult
from gpuguard.errors import GpuGuardError
from gpuguard.policy.models import Severity
from gpuguard.report import check_result_to_dict
from gpuguard.snapshot.loader import load_snapshot

console = Console(stderr=True)

_SEVERITY_COLORS = {
    Severity.LOW: "blue",
    Severity.MEDIUM: "yellow",
    Severity.HIGH: "red",
    Severity.CRITICAL: "bold red",
}


@click.command()
@click.argument("snapshot", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--history",
    "-H",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Earlier snapshot file(s) to use as history.",
)
@click.option(
    "--simulate",
    is_flag=True,
    help="Preview enforcement as a dry run regardless of configured mode.",
)
@click.option(
    "--execute",
    is_flag=True,
    help="Carry out non-simulated intents (signals processes).",
)
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
@click.pass_context
def check(
    ctx: click.Context,
    snapshot: str,
    history: tuple[str, ...],
    simulate: bool,
    execute: bool,
    as_json: bool,
) -> None:
    """Evaluate a GPU snapshot against usage policies."""
    try:
        manager = build_manager(ctx, history)
        snap = load_snapshot(snapshot)
        if simulate:
            result = manager.simulate(snap)
        else:
            result = manager.check(snap, execute=execute)
    except GpuGuardError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(2)

    if as_json:
        click.echo(json.dumps(check_result_to_dict(result), indent=2))
    else:
        _print_result(result)

    if result.violations:
        sys.exit(1)


def _print_result(result: CheckResult) -> None:
    if not result.enabled:
        console.print("[yellow]Guard is disabled; nothing was evaluated.[/yellow]")
        return

    mode = "dry run" if result.simulated else "enforcing"
    console.print(f"[bold]gpuguard[/bold] policy check ([cyan]{mode}[/cyan])\n")

    if not result.violations and not result.warnings:
        console.print("[green]No violations.[/green]")
        return

    if result.violations:
        table = Table(title="Violations", show_lines=False)
        table.add_column("Severity", style="bold", width=10)
        table.add_column("User", style="cyan")
        table.add_column("GPU", justify="right")
        table.add_column("Kind")
        table.add_column("Policy")
        table.add_column("Message", max_width=60)
        for v in result.violations:
            color = _SEVERITY_COLORS[v.severity]
            table.add_row(
                f"[{color}]{v.severity.value}[/{color}]",
                v.user,
                "-" if v.gpu_id is None else str(v.gpu_id),
                v.kind.value,
                v.policy_name,
                v.message,
            )
        console.print(table)

    for w in result.warnings:
        console.print(f"[yellow]warning[/yellow] {w.message}")

    if result.intents:
        console.print("\nEnforcement:")
        for i in result.intents:
            prefix = "[dim](would)[/dim] " if i.simulated else ""
            console.print(
                f"  {prefix}{i.action.value} {i.target.user} "
                f"pid={i.target.process_pid} gpu={i.target.gpu_id}"
            )
    if result.dispatched:
        console.print(f"\n{result.dispatched} action(s) carried out")

    console.print(
        f"\n[red]{len(result.violations)} violation(s)[/red], "
        f"{len(result.warnings)} warning(s)"
    )
