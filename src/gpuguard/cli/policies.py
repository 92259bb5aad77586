"""CLI command: gpuguard policies — show loaded policies and resolved limits."""

from __future__ import annotations

import sys
from datetime import datetime, timezone

import click
import yaml
from rich.console import Console
from rich.table import Table

from gpuguard.cli.context import build_manager
from gpuguard.errors import GpuGuardError
from gpuguard.policy.loader import policy_set_to_dict
from gpuguard.policy.models import Dimension, EffectiveLimits
from gpuguard.snapshot.loader import parse_timestamp

console = Console(stderr=True)


@click.command()
@click.option("--user", "-u", help="Show effective limits for this user.")
@click.option("--gpu", "-g", type=int, default=0, show_default=True)
@click.option("--at", "at", help="ISO timestamp to resolve at (default: now).")
@click.option("--yaml", "as_yaml", is_flag=True, help="Dump policies as YAML.")
@click.pass_context
def policies(
    ctx: click.Context,
    user: str | None,
    gpu: int,
    at: str | None,
    as_yaml: bool,
) -> None:
    """List configured policies or resolve the limits for one user."""
    try:
        manager = build_manager(ctx)
    except GpuGuardError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(2)
    try:
        when = parse_timestamp(at) if at else datetime.now(timezone.utc)
    except ValueError as e:
        console.print(f"[red]Error:[/red] invalid --at timestamp: {e}")
        sys.exit(2)

    policy_set = manager.policies()

    if user is not None:
        _print_limits(user, gpu, manager.resolve(user, gpu, when))
        return

    if as_yaml:
        click.echo(yaml.safe_dump(policy_set_to_dict(policy_set), sort_keys=False))
        return

    data = policy_set_to_dict(policy_set)
    status = manager.status()
    console.print(
        f"[bold]gpuguard[/bold] policies: mode [cyan]{status.mode.value}[/cyan], "
        f"soft={status.soft_enforcement} hard={status.hard_enforcement}\n"
    )

    table = Table(title="Policies", show_lines=False)
    table.add_column("Kind", style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Limits")
    for p in data["users"]:
        table.add_row("user", p["username"], _limits_text(p))
    for g in data["groups"]:
        table.add_row(
            "group",
            g["group_name"],
            _limits_text(g) + f" members={','.join(g['members'])}",
        )
    for g in data["gpus"]:
        table.add_row("gpu", str(g["gpu_index"]), _limits_text(g))
    for t in data["time_policies"]:
        w = t["window"]
        table.add_row(
            "time",
            t["name"],
            _limits_text(t) + f" {w['start']}-{w['end']}",
        )
    console.print(table)


def _limits_text(entry: dict) -> str:
    skip = {"username", "group_name", "gpu_index", "name", "window", "description"}
    parts = [
        f"{k}={v}"
        for k, v in entry.items()
        if k not in skip and k != "members" and v not in (None, [], "")
    ]
    return " ".join(parts) or "-"


def _print_limits(user: str, gpu: int, limits: EffectiveLimits) -> None:
    table = Table(title=f"Effective limits for {user} on GPU {gpu}")
    table.add_column("Dimension", style="bold")
    table.add_column("Limit", justify="right")
    table.add_column("Set by", style="cyan")
    for dim in Dimension:
        value = limits.get(dim)
        table.add_row(
            dim.value,
            "unconstrained" if value is None else str(value),
            limits.source(dim) or "-",
        )
    console.print(table)
    if limits.reserved_memory_gb:
        console.print(f"Reserved memory: {limits.reserved_memory_gb} GB")
    if limits.access_denied:
        console.print(f"[red]Access denied:[/red] {limits.access_denied}")
    if limits.maintenance:
        console.print(f"[yellow]Maintenance:[/yellow] {limits.maintenance}")
    for g in limits.groups:
        console.print(
            f"Group {g.group_name}: memory {g.total_memory_limit_gb} GB, "
            f"processes {g.max_concurrent_processes}"
        )
