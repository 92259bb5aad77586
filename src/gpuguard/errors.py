"""Exceptions raised by gpuguard.

A failed call raises. It never returns an empty result.
"""

from __future__ import annotations


class GpuGuardError(Exception):
    """Base class for all gpuguard errors."""


class SnapshotError(GpuGuardError, ValueError):
    """A snapshot or history entry is malformed (dangling GPU, bad values)."""


class PolicyError(GpuGuardError, ValueError):
    """A policy was rejected at store write time."""


class ConfigError(GpuGuardError, ValueError):
    """Configuration is inconsistent and was rejected at load time."""
