"""Load guard configuration (policies plus enforcement settings) from YAML."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time
from pathlib import Path

import yaml

from gpuguard.enforcement.models import EnforcementConfig, Mode
from gpuguard.errors import PolicyError
from gpuguard.policy.models import (
    GlobalSettings,
    GpuPolicy,
    GroupPolicy,
    LimitSet,
    SeverityBuckets,
    TimePolicy,
    TimeWindow,
    UserPolicy,
)
from gpuguard.policy.store import PolicySet

_LIMIT_KEYS = (
    "memory_limit_gb",
    "utilization_limit_pct",
    "duration_limit_hours",
    "max_concurrent_processes",
)


@dataclass(frozen=True)
class GuardConfig:
    policies: PolicySet = field(default_factory=PolicySet)
    enforcement: EnforcementConfig = field(default_factory=EnforcementConfig)


def load_guard_config(path: str | Path) -> GuardConfig:
    """Load a guard config from a YAML file path."""
    text = Path(path).read_text(encoding="utf-8")
    return load_guard_config_from_string(text)


def load_guard_config_from_string(text: str) -> GuardConfig:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise PolicyError(f"Invalid guard config YAML: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise PolicyError("Guard config YAML must be a mapping")
    return guard_config_from_dict(data)


def guard_config_from_dict(data: dict) -> GuardConfig:
    try:
        global_data = _mapping(data, "global")
        enforcement_data = _mapping(data, "enforcement")

        settings = GlobalSettings(
            default_limits=_parse_limits(_mapping(global_data, "default_limits")),
            warning_margin=float(global_data.get("warning_margin", 0.8)),
            severity_buckets=SeverityBuckets(
                **{
                    k: float(v)
                    for k, v in _mapping(enforcement_data, "severity_buckets").items()
                }
            ),
            check_interval_seconds=int(global_data.get("check_interval_seconds", 60)),
        )
        dry_run = bool(global_data.get("dry_run", True))
        enforcement = EnforcementConfig(
            enabled=bool(global_data.get("enabled", True)),
            mode=Mode.DRY_RUN if dry_run else Mode.ENFORCING,
            soft_enforcement=bool(enforcement_data.get("soft_enforcement", True)),
            hard_enforcement=bool(enforcement_data.get("hard_enforcement", False)),
            recent_capacity=int(enforcement_data.get("recent_capacity", 50)),
        )
        if enforcement.recent_capacity < 1:
            raise PolicyError("recent_capacity must be at least 1")

        policies = PolicySet.of(
            users=[_parse_user(u) for u in _entries(data, "users")],
            groups=[_parse_group(g) for g in _entries(data, "groups")],
            gpus=[_parse_gpu(g) for g in _entries(data, "gpus")],
            time_policies=[
                _parse_time_policy(t) for t in _entries(data, "time_policies")
            ],
            settings=settings,
        )
    except PolicyError:
        raise
    except KeyError as e:
        raise PolicyError(f"Guard config is missing required field {e}") from e
    except (TypeError, ValueError) as e:
        raise PolicyError(f"Malformed guard config: {e}") from e
    return GuardConfig(policies=policies, enforcement=enforcement)


def _mapping(data: dict, key: str) -> dict:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise PolicyError(f"'{key}' must be a mapping")
    return value


def _entries(data: dict, key: str) -> list[dict]:
    value = data.get(key) or []
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise PolicyError(f"'{key}' must be a list of mappings")
    return value


def _items(d: dict, key: str) -> list:
    value = d.get(key)
    if value is None:
        return []
    # A bare YAML scalar (`allowed_users: bob`) means a one-element list
    if isinstance(value, (str, int, float)):
        return [value]
    if not isinstance(value, list):
        raise PolicyError(f"'{key}' must be a list")
    return value


def _optional_float(value: object) -> float | None:
    return None if value is None else float(value)


def _parse_limits(d: dict) -> LimitSet:
    procs = d.get("max_concurrent_processes")
    return LimitSet(
        memory_limit_gb=_optional_float(d.get("memory_limit_gb")),
        utilization_limit_pct=_optional_float(d.get("utilization_limit_pct")),
        duration_limit_hours=_optional_float(d.get("duration_limit_hours")),
        max_concurrent_processes=None if procs is None else int(procs),
    )


def _parse_time(value: object) -> time:
    if isinstance(value, time):
        return value
    # YAML 1.1 reads unquoted 9:30 as the sexagesimal integer 570
    if isinstance(value, int):
        return time(value // 60, value % 60)
    text = str(value)
    if text in ("24:00", "24:00:00"):
        return time.max
    return time.fromisoformat(text)


def _parse_window(d: dict) -> TimeWindow:
    days_key = "days_of_week" if "days_of_week" in d else "days"
    return TimeWindow(
        start=_parse_time(d["start"]),
        end=_parse_time(d["end"]),
        days_of_week=frozenset(int(x) for x in _items(d, days_key)),
    )


def _parse_user(d: dict) -> UserPolicy:
    return UserPolicy(
        username=str(d.get("username", d.get("name", ""))),
        limits=_parse_limits(d),
        allowed_gpus=frozenset(int(i) for i in _items(d, "allowed_gpus")),
        blocked_gpus=frozenset(int(i) for i in _items(d, "blocked_gpus")),
        description=str(d.get("description", "")),
    )


def _parse_group(d: dict) -> GroupPolicy:
    procs = d.get("max_concurrent_processes")
    return GroupPolicy(
        group_name=str(d.get("group_name", d.get("name", ""))),
        members=frozenset(str(m) for m in _items(d, "members")),
        total_memory_limit_gb=_optional_float(d.get("total_memory_limit_gb")),
        max_concurrent_processes=None if procs is None else int(procs),
        gpus=frozenset(int(i) for i in _items(d, "gpus")),
        description=str(d.get("description", "")),
    )


def _parse_gpu(d: dict) -> GpuPolicy:
    window = d.get("maintenance_window")
    return GpuPolicy(
        gpu_index=int(d["gpu_index"]),
        max_memory_gb=_optional_float(d.get("max_memory_gb")),
        max_utilization_pct=_optional_float(d.get("max_utilization_pct")),
        reserved_memory_gb=float(d.get("reserved_memory_gb", 0.0)),
        allowed_users=frozenset(str(u) for u in _items(d, "allowed_users")),
        blocked_users=frozenset(str(u) for u in _items(d, "blocked_users")),
        maintenance_window=_parse_window(window) if window else None,
        maintenance_message=str(d.get("maintenance_message", "")),
    )


def _parse_time_policy(d: dict) -> TimePolicy:
    if not isinstance(d.get("window"), dict):
        raise PolicyError("time policy 'window' must be a mapping")
    return TimePolicy(
        name=str(d.get("name", "")),
        window=_parse_window(d["window"]),
        limits=_parse_limits(d),
        description=str(d.get("description", "")),
    )


# --- Serialization ---


def _limits_to_dict(limits: LimitSet) -> dict:
    return {
        k: getattr(limits, k) for k in _LIMIT_KEYS if getattr(limits, k) is not None
    }


def _window_to_dict(window: TimeWindow) -> dict:
    return {
        "start": window.start.isoformat(),
        "end": window.end.isoformat(),
        "days_of_week": sorted(window.days_of_week),
    }


def policy_set_to_dict(policies: PolicySet) -> dict:
    """Plain-data rendering of a policy set, used by the CLI and the HTTP API."""
    s = policies.settings
    return {
        "global": {
            "warning_margin": s.warning_margin,
            "check_interval_seconds": s.check_interval_seconds,
            "default_limits": _limits_to_dict(s.default_limits),
            "severity_buckets": {
                "critical": s.severity_buckets.critical,
                "high": s.severity_buckets.high,
                "medium": s.severity_buckets.medium,
            },
        },
        "users": [
            {
                "username": p.username,
                **_limits_to_dict(p.limits),
                "allowed_gpus": sorted(p.allowed_gpus),
                "blocked_gpus": sorted(p.blocked_gpus),
                "description": p.description,
            }
            for _, p in sorted(policies.users.items())
        ],
        "groups": [
            {
                "group_name": g.group_name,
                "members": sorted(g.members),
                "total_memory_limit_gb": g.total_memory_limit_gb,
                "max_concurrent_processes": g.max_concurrent_processes,
                "gpus": sorted(g.gpus),
                "description": g.description,
            }
            for _, g in sorted(policies.groups.items())
        ],
        "gpus": [
            {
                "gpu_index": g.gpu_index,
                "max_memory_gb": g.max_memory_gb,
                "max_utilization_pct": g.max_utilization_pct,
                "reserved_memory_gb": g.reserved_memory_gb,
                "allowed_users": sorted(g.allowed_users),
                "blocked_users": sorted(g.blocked_users),
                "maintenance_window": (
                    _window_to_dict(g.maintenance_window)
                    if g.maintenance_window
                    else None
                ),
            }
            for _, g in sorted(policies.gpus.items())
        ],
        "time_policies": [
            {
                "name": t.name,
                "window": _window_to_dict(t.window),
                **_limits_to_dict(t.limits),
                "description": t.description,
            }
            for _, t in sorted(policies.time_policies.items())
        ],
    }
