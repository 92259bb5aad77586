"""Rogue detection configuration: thresholds, pattern lists and whitelists.

Configuration is immutable. Updates produce a new ``RogueConfig`` (see the
``with_*`` / ``without_*`` helpers) which is validated before it can reach
the detector.
"""

from __future__ import annotations

import dataclasses
import enum
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from gpuguard.errors import ConfigError


class PatternTarget(enum.Enum):
    """Which process attribute a custom pattern is matched against."""

    PROCESS_NAME = "process_name"
    USER = "user"
    CONTAINER = "container"


@dataclass(frozen=True)
class CustomPattern:
    """Operator-defined regex that raises suspicion when it matches."""

    name: str
    pattern: str
    target: PatternTarget = PatternTarget.PROCESS_NAME
    confidence_boost: float = 0.3
    description: str = ""


@dataclass(frozen=True)
class DetectionTypes:
    crypto_miners: bool = True
    suspicious_processes: bool = True
    resource_abusers: bool = True


@dataclass(frozen=True)
class IndicatorWeights:
    """Confidence contributed by each individual indicator."""

    mining_pattern: float = 0.3
    known_miner: float = 0.6
    sustained_utilization: float = 0.25
    mining_duration: float = 0.15
    high_memory: float = 0.1
    unusual_name: float = 0.3
    unknown_user: float = 0.2
    baseline_anomaly: float = 0.3
    excessive_utilization: float = 0.4
    excessive_memory: float = 0.3


@dataclass(frozen=True)
class ThreatWeights:
    """Weight of each finding type in the aggregate risk score."""

    crypto_miner: float = 0.8
    suspicious_process: float = 0.6
    resource_abuser: float = 0.3


@dataclass(frozen=True)
class RiskThresholds:
    """Confidence cut points, strictly descending."""

    critical: float = 0.9
    high: float = 0.7
    medium: float = 0.5
    low: float = 0.3


@dataclass(frozen=True)
class AlertThresholds:
    """When a scan result is worth alerting an operator about."""

    risk_score: float = 0.7
    crypto_miners: int = 1
    suspicious_processes: int = 3
    resource_abusers: int = 2


_DEFAULT_MINER_PATTERNS = (
    "miner",
    "hash",
    "cryptonight",
    "ethash",
    "equihash",
    "kawpow",
    "randomx",
)

_DEFAULT_MINER_NAMES = (
    "xmrig",
    "ccminer",
    "cgminer",
    "bfgminer",
    "sgminer",
    "ethminer",
    "t-rex",
    "lolminer",
    "nbminer",
    "gminer",
)

_DEFAULT_UNUSUAL_NAME_PATTERNS = ("temp", "tmp", "random", "test", "unknown")


@dataclass(frozen=True)
class RogueConfig:
    """Everything the threat detector needs, as one immutable value."""

    max_memory_usage_gb: float = 20.0
    max_utilization_pct: float = 90.0
    max_duration_hours: float = 24.0
    min_confidence_threshold: float = 0.7
    mining_duration_hours: float = 2.0
    sustained_fraction: float = 0.8
    min_sustained_samples: int = 3
    baseline_anomaly_factor: float = 3.0
    min_baseline_samples: int = 3

    crypto_miner_patterns: frozenset[str] = frozenset(_DEFAULT_MINER_PATTERNS)
    suspicious_process_names: frozenset[str] = frozenset(_DEFAULT_MINER_NAMES)
    unusual_name_patterns: frozenset[str] = frozenset(_DEFAULT_UNUSUAL_NAME_PATTERNS)
    custom_patterns: tuple[CustomPattern, ...] = ()

    user_whitelist: frozenset[str] = frozenset({"root", "admin", "system"})
    process_whitelist: frozenset[str] = frozenset(
        {"python", "jupyter", "tensorflow", "pytorch", "nvidia-smi"}
    )
    known_users: frozenset[str] = frozenset()
    blocked_users: frozenset[str] = frozenset()

    enabled: DetectionTypes = field(default_factory=DetectionTypes)
    indicator_weights: IndicatorWeights = field(default_factory=IndicatorWeights)
    threat_weights: ThreatWeights = field(default_factory=ThreatWeights)
    risk_thresholds: RiskThresholds = field(default_factory=RiskThresholds)
    alerts: AlertThresholds = field(default_factory=AlertThresholds)

    def validate(self) -> RogueConfig:
        """Raise ConfigError on inconsistent values; return self when valid."""
        errors: list[str] = []

        for name in (
            "max_memory_usage_gb",
            "max_utilization_pct",
            "max_duration_hours",
            "mining_duration_hours",
            "baseline_anomaly_factor",
        ):
            if getattr(self, name) < 0:
                errors.append(f"{name} must not be negative")

        if self.max_utilization_pct > 100:
            errors.append("max_utilization_pct must be at most 100")
        if not 0.0 <= self.min_confidence_threshold <= 1.0:
            errors.append("min_confidence_threshold must be within [0, 1]")
        if not 0.0 < self.sustained_fraction <= 1.0:
            errors.append("sustained_fraction must be within (0, 1]")
        if self.min_sustained_samples < 1:
            errors.append("min_sustained_samples must be at least 1")
        if self.min_baseline_samples < 1:
            errors.append("min_baseline_samples must be at least 1")

        t = self.risk_thresholds
        cuts = (t.critical, t.high, t.medium, t.low)
        if any(not 0.0 <= c <= 1.0 for c in cuts):
            errors.append("risk thresholds must be within [0, 1]")
        if not t.critical > t.high > t.medium > t.low:
            errors.append("risk thresholds must be strictly descending")

        for section in (self.indicator_weights, self.threat_weights):
            for f in dataclasses.fields(section):
                if getattr(section, f.name) < 0:
                    errors.append(f"weight {f.name} must not be negative")

        for cp in self.custom_patterns:
            if cp.confidence_boost < 0:
                errors.append(f"custom pattern {cp.name}: boost must not be negative")
            try:
                re.compile(cp.pattern)
            except re.error as e:
                errors.append(f"custom pattern {cp.name}: invalid regex ({e})")

        if self.alerts.risk_score < 0:
            errors.append("alert risk_score threshold must not be negative")

        if errors:
            raise ConfigError("; ".join(errors))
        return self

    # --- Whitelist management (case-insensitive, deduplicated) ---

    def with_user_whitelisted(self, user: str) -> RogueConfig:
        return dataclasses.replace(
            self, user_whitelist=_add_ci(self.user_whitelist, user)
        )

    def without_user_whitelisted(self, user: str) -> RogueConfig:
        return dataclasses.replace(
            self, user_whitelist=_remove_ci(self.user_whitelist, user)
        )

    def with_process_whitelisted(self, process: str) -> RogueConfig:
        return dataclasses.replace(
            self, process_whitelist=_add_ci(self.process_whitelist, process)
        )

    def without_process_whitelisted(self, process: str) -> RogueConfig:
        return dataclasses.replace(
            self, process_whitelist=_remove_ci(self.process_whitelist, process)
        )

    def with_thresholds(
        self,
        max_memory_usage_gb: float | None = None,
        max_utilization_pct: float | None = None,
        max_duration_hours: float | None = None,
        min_confidence_threshold: float | None = None,
    ) -> RogueConfig:
        changes = {
            k: v
            for k, v in (
                ("max_memory_usage_gb", max_memory_usage_gb),
                ("max_utilization_pct", max_utilization_pct),
                ("max_duration_hours", max_duration_hours),
                ("min_confidence_threshold", min_confidence_threshold),
            )
            if v is not None
        }
        return dataclasses.replace(self, **changes).validate()


def _add_ci(entries: frozenset[str], value: str) -> frozenset[str]:
    lowered = value.lower()
    if any(e.lower() == lowered for e in entries):
        return entries
    return entries | {lowered}


def _remove_ci(entries: frozenset[str], value: str) -> frozenset[str]:
    lowered = value.lower()
    return frozenset(e for e in entries if e.lower() != lowered)


# --- YAML loading ---

_SET_FIELDS = (
    "crypto_miner_patterns",
    "suspicious_process_names",
    "unusual_name_patterns",
    "user_whitelist",
    "process_whitelist",
    "known_users",
    "blocked_users",
)

_SCALAR_FIELDS = (
    "max_memory_usage_gb",
    "max_utilization_pct",
    "max_duration_hours",
    "min_confidence_threshold",
    "mining_duration_hours",
    "sustained_fraction",
    "baseline_anomaly_factor",
)

_INT_FIELDS = ("min_sustained_samples", "min_baseline_samples")

_SECTIONS = {
    "enabled": DetectionTypes,
    "indicator_weights": IndicatorWeights,
    "threat_weights": ThreatWeights,
    "risk_thresholds": RiskThresholds,
    "alerts": AlertThresholds,
}


def load_rogue_config(path: str | Path) -> RogueConfig:
    """Load and validate a rogue detection config from a YAML file."""
    text = Path(path).read_text(encoding="utf-8")
    return load_rogue_config_from_string(text)


def load_rogue_config_from_string(text: str) -> RogueConfig:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid rogue config YAML: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Rogue config YAML must be a mapping")
    return rogue_config_from_dict(data)


def rogue_config_from_dict(data: dict) -> RogueConfig:
    kwargs: dict = {}
    try:
        for name in _SCALAR_FIELDS:
            if name in data:
                kwargs[name] = float(data[name])
        for name in _INT_FIELDS:
            if name in data:
                kwargs[name] = int(data[name])
        for name in _SET_FIELDS:
            if name in data:
                kwargs[name] = frozenset(str(v).lower() for v in _names(data, name))
        for name, cls in _SECTIONS.items():
            section = data.get(name)
            if section is None:
                continue
            if not isinstance(section, dict):
                raise ConfigError(f"'{name}' must be a mapping")
            known = {f.name for f in dataclasses.fields(cls)}
            unknown = set(section) - known
            if unknown:
                raise ConfigError(f"Unknown keys in '{name}': {sorted(unknown)}")
            defaults = cls()
            kwargs[name] = cls(
                **{k: type(getattr(defaults, k))(v) for k, v in section.items()}
            )
        kwargs["custom_patterns"] = tuple(
            _parse_custom_pattern(p) for p in data.get("custom_patterns", []) or []
        )
    except ConfigError:
        raise
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Malformed rogue config: {e}") from e
    return RogueConfig(**kwargs).validate()


def _names(data: dict, key: str) -> list:
    value = data[key]
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"'{key}' must be a list of names")
    return value


def _parse_custom_pattern(p: dict) -> CustomPattern:
    if not isinstance(p, dict) or "name" not in p or "pattern" not in p:
        raise ConfigError("custom_patterns entries need 'name' and 'pattern'")
    return CustomPattern(
        name=str(p["name"]),
        pattern=str(p["pattern"]),
        target=PatternTarget(p.get("target", "process_name")),
        confidence_boost=float(p.get("confidence_boost", 0.3)),
        description=str(p.get("description", "")),
    )


def rogue_config_to_dict(config: RogueConfig) -> dict:
    data: dict = {}
    for name in _SCALAR_FIELDS + _INT_FIELDS:
        data[name] = getattr(config, name)
    for name in _SET_FIELDS:
        data[name] = sorted(getattr(config, name))
    for name in _SECTIONS:
        data[name] = dataclasses.asdict(getattr(config, name))
    data["custom_patterns"] = [
        {
            "name": cp.name,
            "pattern": cp.pattern,
            "target": cp.target.value,
            "confidence_boost": cp.confidence_boost,
            "description": cp.description,
        }
        for cp in config.custom_patterns
    ]
    return data


def export_yaml(config: RogueConfig) -> str:
    """Serialize a config to YAML that ``load_rogue_config_from_string`` accepts."""
    return yaml.safe_dump(rogue_config_to_dict(config), sort_keys=False)
