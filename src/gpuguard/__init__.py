"""Usage policy enforcement and rogue detection for shared GPUs."""

__version__ = "0.1.0"
