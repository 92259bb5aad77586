"""Application configuration with XDG paths and env var overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _default_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "gpuguard"
    return Path.home() / ".config" / "gpuguard"


@dataclass
class GpuGuardConfig:
    """Application-wide configuration."""

    config_dir: Path = field(default_factory=_default_config_dir)
    rogue_config_path: Path | None = None
    guard_config_path: Path | None = None
    history_hours: float = 24.0
    recent_capacity: int = 50
    web_host: str = "127.0.0.1"  # Loopback only
    web_port: int = 8471
    verbose: bool = False

    @classmethod
    def load(cls) -> GpuGuardConfig:
        """Load config from environment variables with XDG defaults."""
        config = cls()

        env_hours = os.environ.get("GPUGUARD_HISTORY_HOURS")
        if env_hours:
            config.history_hours = float(env_hours)

        env_capacity = os.environ.get("GPUGUARD_RECENT_CAPACITY")
        if env_capacity:
            config.recent_capacity = int(env_capacity)

        env_port = os.environ.get("GPUGUARD_WEB_PORT")
        if env_port:
            config.web_port = int(env_port)

        # Pick up config files from the config dir when present
        rogue = config.config_dir / "rogue.yaml"
        if rogue.is_file():
            config.rogue_config_path = rogue
        guard = config.config_dir / "policies.yaml"
        if guard.is_file():
            config.guard_config_path = guard

        return config
