"""Shared helpers for building guard state from CLI options."""

from __future__ import annotations

from pathlib import Path

import click

from gpuguard.config import GpuGuardConfig
from gpuguard.guard.manager import GuardManager
from gpuguard.snapshot.loader import load_history


def build_manager(
    ctx: click.Context, history_paths: tuple[str, ...] = ()
) -> GuardManager:
    """GuardManager from the global options, with history files observed.

    Files named on the command line take precedence over those found in
    the config directory.
    """
    config = GpuGuardConfig.load()
    if ctx.obj.get("policies_path"):
        config.guard_config_path = Path(ctx.obj["policies_path"])
    if ctx.obj.get("rogue_config_path"):
        config.rogue_config_path = Path(ctx.obj["rogue_config_path"])

    manager = GuardManager.from_config(config)
    if history_paths:
        history = load_history(list(history_paths), config.history_hours)
        for snapshot in history:
            manager.observe(snapshot)
    return manager
