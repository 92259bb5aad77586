"""CLI command: gpuguard scan <snapshot> — rogue process detection."""

from __future__ import annotations

import json
import sys

import click
from rich.console import Console
from rich.table import Table

from gpuguard.cli.context import build_manager
from gpuguard.detection.models import RogueScanResult
from gpuguard.errors import GpuGuardError
from gpuguard.report import scan_result_to_dict
from gpuguard.snapshot.loader import load_snapshot

console = Console(stderr=True)

_LEVEL_COLORS = {
    "low": "blue",
    "medium": "yellow",
    "high": "red",
    "critical": "bold red",
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
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
@click.pass_context
def scan(
    ctx: click.Context,
    snapshot: str,
    history: tuple[str, ...],
    as_json: bool,
) -> None:
    """Scan a GPU snapshot for crypto miners, suspicious processes and abuse."""
    try:
        manager = build_manager(ctx, history)
        snap = load_snapshot(snapshot)
        result = manager.scan(snap)
    except GpuGuardError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(2)

    alert = manager.should_alert(result)

    if as_json:
        click.echo(json.dumps(scan_result_to_dict(result, alert=alert), indent=2))
    else:
        _print_result(result)

    if alert:
        if not as_json:
            console.print("\n[red]Alert thresholds reached[/red]")
        sys.exit(1)


def _print_result(result: RogueScanResult) -> None:
    console.print(
        f"[bold]gpuguard[/bold] scan of [cyan]{result.host}[/cyan] "
        f"at {result.timestamp.isoformat()}\n"
    )
    if result.is_clean:
        console.print("[green]No threats found.[/green]")
        return

    table = Table(title="Findings", show_lines=False)
    table.add_column("Type", style="bold")
    table.add_column("PID", justify="right")
    table.add_column("User", style="cyan")
    table.add_column("Process")
    table.add_column("GPU", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Details", max_width=60)

    for m in result.crypto_miners:
        table.add_row(
            "[bold red]miner[/bold red]",
            str(m.process.pid),
            m.process.user,
            m.process.process_name,
            str(m.process.gpu_index),
            f"{m.confidence:.2f}",
            ", ".join(m.indicators),
        )
    for s in result.suspicious_processes:
        color = _LEVEL_COLORS.get(s.risk_level.value, "white")
        table.add_row(
            f"[{color}]suspicious ({s.risk_level.value})[/{color}]",
            str(s.process.pid),
            s.process.user,
            s.process.process_name,
            str(s.process.gpu_index),
            f"{s.confidence:.2f}",
            ", ".join(s.reasons),
        )
    for a in result.resource_abusers:
        table.add_row(
            f"[yellow]{a.abuse_type.value}[/yellow]",
            str(a.process.pid),
            a.process.user,
            a.process.process_name,
            str(a.process.gpu_index),
            f"{a.severity:.2f}",
            ", ".join(a.reasons),
        )

    console.print(table)
    console.print(f"\nRisk score: [bold]{result.risk_score:.2f}[/bold]")
    for rec in result.recommendations:
        console.print(f"  • {rec}")
