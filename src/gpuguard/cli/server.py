"""CLI command: gpuguard server — start the HTTP API."""

from __future__ import annotations

import click
from rich.console import Console

from gpuguard.cli.context import build_manager
from gpuguard.config import GpuGuardConfig

console = Console(stderr=True)


@click.command()
@click.option(
    "--port",
    type=int,
    default=None,
    help="Port to listen on (default: 8471).",
)
@click.pass_context
def server(ctx: click.Context, port: int | None) -> None:
    """Start the gpuguard HTTP API."""
    try:
        import uvicorn
    except ImportError:
        console.print(
            "[red]Web dependencies not installed.[/red]\n"
            "Install with: pip install gpuguard[web]"
        )
        raise SystemExit(1)

    from gpuguard.web.app import create_app

    config = GpuGuardConfig.load()
    if port is not None:
        config.web_port = port

    manager = build_manager(ctx)
    app = create_app(config, manager=manager)

    console.print(
        f"[bold]gpuguard[/bold] API starting on "
        f"[cyan]http://{config.web_host}:{config.web_port}[/cyan]"
    )
    console.print("  [dim]Bound to 127.0.0.1 only[/dim]\n")

    uvicorn.run(app, host=config.web_host, port=config.web_port, log_level="info")
