"""CLI entry point — Click group with global options."""

from __future__ import annotations

import logging

import click

from gpuguard import __version__


@click.group()
@click.version_option(version=__version__, prog_name="gpuguard")
@click.option(
    "--policies",
    "-p",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to a YAML guard config (policies and enforcement).",
)
@click.option(
    "--rogue-config",
    "-r",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to a YAML rogue detection config.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def main(
    ctx: click.Context,
    policies: str | None,
    rogue_config: str | None,
    verbose: bool,
) -> None:
    """gpuguard — GPU usage policy enforcement and rogue process detection."""
    ctx.ensure_object(dict)
    ctx.obj["policies_path"] = policies
    ctx.obj["rogue_config_path"] = rogue_config
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _register_commands() -> None:
    from gpuguard.cli.check import check  # noqa: F811
    from gpuguard.cli.policies import policies  # noqa: F811
    from gpuguard.cli.scan import scan  # noqa: F811
    from gpuguard.cli.server import server  # noqa: F811

    main.add_command(scan)
    main.add_command(check)
    main.add_command(policies)
    main.add_command(server)


_register_commands()
