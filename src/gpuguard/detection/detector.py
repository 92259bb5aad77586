"""Threat detector: rule-based scoring of crypto miners, suspicious processes
and resource abusers.

``scan`` is a pure function of (snapshot, history, config) and keeps no state
between calls. Every finding carries the indicator strings that produced it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from gpuguard.detection.config import CustomPattern, PatternTarget, RogueConfig
from gpuguard.detection.models import (
    AbuseType,
    CryptoMiner,
    FindingType,
    ResourceAbuser,
    RiskLevel,
    RogueScanResult,
    SuspiciousProcess,
    ThreatFinding,
)
from gpuguard.snapshot.models import MB_PER_GB, HistoryWindow, ProcessRecord, Snapshot

logger = logging.getLogger(__name__)

_RECOMMENDATIONS = {
    FindingType.CRYPTO_MINER: (
        "CRITICAL: crypto miners detected. Terminate the processes and "
        "review how the accounts were accessed."
    ),
    FindingType.SUSPICIOUS_PROCESS: (
        "Suspicious processes detected. Review and investigate their owners."
    ),
    FindingType.RESOURCE_ABUSER: (
        "Resource abuse detected. Consider tightening usage policies."
    ),
}


@dataclass
class _ProcessContext:
    """Per-process quantities derived once and shared by every rule."""

    record: ProcessRecord
    utilization_pct: float
    duration_hours: float
    utilization_samples: list[float]
    user_baseline_mb: float | None
    user_baseline_samples: int


def scan(
    snapshot: Snapshot,
    history: HistoryWindow | None,
    config: RogueConfig,
) -> RogueScanResult:
    """Classify every non-whitelisted process in ``snapshot``.

    Raises SnapshotError if the snapshot is malformed; nothing is partially
    classified in that case.
    """
    snapshot.validate()
    past = (
        history.before(snapshot.timestamp)
        if history is not None
        else HistoryWindow()
    )
    detector = _Detector(config)

    miners: list[CryptoMiner] = []
    suspicious: list[SuspiciousProcess] = []
    abusers: list[ResourceAbuser] = []

    for record in snapshot.processes:
        if detector.is_whitelisted(record):
            logger.debug(
                "Skipping whitelisted process %s (pid %d, user %s)",
                record.process_name,
                record.pid,
                record.user,
            )
            continue

        ctx = _build_context(record, snapshot, past)

        if config.enabled.crypto_miners:
            miner = detector.score_crypto_miner(ctx)
            if miner is not None:
                miners.append(miner)

        if config.enabled.suspicious_processes:
            sus = detector.score_suspicious(ctx)
            if sus is not None:
                suspicious.append(sus)

        if config.enabled.resource_abusers:
            abusers.extend(detector.classify_abuse(ctx))

    findings: list[ThreatFinding] = [*miners, *suspicious, *abusers]
    risk_score = calculate_risk_score(findings, config)

    result = RogueScanResult(
        timestamp=snapshot.timestamp,
        host=snapshot.host,
        crypto_miners=tuple(miners),
        suspicious_processes=tuple(suspicious),
        resource_abusers=tuple(abusers),
        risk_score=risk_score,
        recommendations=generate_recommendations(findings),
    )
    logger.info(
        "Rogue scan of %s: %d miner(s), %d suspicious, %d abuse finding(s), "
        "risk %.2f",
        snapshot.host,
        len(miners),
        len(suspicious),
        len(abusers),
        risk_score,
    )
    return result


def calculate_risk_score(
    findings: list[ThreatFinding], config: RogueConfig
) -> float:
    """Weighted mean of finding scores by threat-type weight, within [0, 1]."""
    weights = {
        FindingType.CRYPTO_MINER: config.threat_weights.crypto_miner,
        FindingType.SUSPICIOUS_PROCESS: config.threat_weights.suspicious_process,
        FindingType.RESOURCE_ABUSER: config.threat_weights.resource_abuser,
    }
    total_weight = 0.0
    weighted = 0.0
    for finding in findings:
        w = weights[finding.finding_type]
        total_weight += w
        weighted += w * _clip(finding.score)
    if total_weight <= 0.0:
        return 0.0
    return _clip(weighted / total_weight)


def generate_recommendations(findings: list[ThreatFinding]) -> tuple[str, ...]:
    """One recommendation per finding type present, miners first."""
    present = {f.finding_type for f in findings}
    return tuple(_RECOMMENDATIONS[t] for t in FindingType if t in present)


def should_alert(result: RogueScanResult, config: RogueConfig) -> bool:
    """Whether a scan result crosses any configured alert threshold.

    A count threshold of 0 disables that trigger.
    """
    a = config.alerts
    counts = (
        (len(result.crypto_miners), a.crypto_miners),
        (len(result.suspicious_processes), a.suspicious_processes),
        (len(result.resource_abusers), a.resource_abusers),
    )
    if result.findings and result.risk_score >= a.risk_score:
        return True
    return any(limit and n >= limit for n, limit in counts)


def determine_risk_level(confidence: float, config: RogueConfig) -> RiskLevel:
    t = config.risk_thresholds
    for level, cut in (
        (RiskLevel.CRITICAL, t.critical),
        (RiskLevel.HIGH, t.high),
        (RiskLevel.MEDIUM, t.medium),
        (RiskLevel.LOW, t.low),
    ):
        if confidence >= cut:
            return level
    return RiskLevel.LOW


def overage(observed: float, threshold: float) -> float:
    """Normalized amount over a threshold, capped at 1.0."""
    if threshold <= 0:
        return 1.0
    return min(1.0, max(0.0, (observed - threshold) / threshold))


def _build_context(
    record: ProcessRecord, snapshot: Snapshot, past: HistoryWindow
) -> _ProcessContext:
    gpu = snapshot.gpu(record.gpu_index)
    utilization = gpu.utilization_pct if gpu is not None else 0.0
    samples = past.gpu_utilization_samples(record.pid, record.gpu_index)
    samples.append(utilization)

    baseline_samples = past.user_memory_samples(record.user)
    baseline = (
        sum(baseline_samples) / len(baseline_samples) if baseline_samples else None
    )
    return _ProcessContext(
        record=record,
        utilization_pct=utilization,
        duration_hours=past.duration_hours(record, snapshot.timestamp),
        utilization_samples=samples,
        user_baseline_mb=baseline,
        user_baseline_samples=len(baseline_samples),
    )


def _clip(value: float) -> float:
    return max(0.0, min(1.0, value))


class _Detector:
    """Rule implementations bound to one config for a single scan."""

    def __init__(self, config: RogueConfig) -> None:
        self.config = config
        self._user_whitelist = {u.lower() for u in config.user_whitelist}
        self._process_whitelist = tuple(p.lower() for p in config.process_whitelist)
        self._known_users = {u.lower() for u in config.known_users}
        self._blocked_users = {u.lower() for u in config.blocked_users}
        self._custom: list[tuple[CustomPattern, re.Pattern[str]]] = [
            (cp, re.compile(cp.pattern, re.IGNORECASE))
            for cp in config.custom_patterns
        ]

    # --- Whitelist ---

    def is_user_whitelisted(self, user: str) -> bool:
        return user.lower() in self._user_whitelist

    def is_process_whitelisted(self, process_name: str) -> bool:
        """Exact or prefix match ("python" covers "python3.11")."""
        name = process_name.lower()
        return any(name.startswith(entry) for entry in self._process_whitelist)

    def is_whitelisted(self, record: ProcessRecord) -> bool:
        return self.is_user_whitelisted(record.user) or self.is_process_whitelisted(
            record.process_name
        )

    # --- Shared indicators ---

    def is_sustained_high_utilization(self, ctx: _ProcessContext) -> bool:
        samples = ctx.utilization_samples
        if len(samples) < self.config.min_sustained_samples:
            return False
        over = sum(1 for s in samples if s > self.config.max_utilization_pct)
        return over / len(samples) >= self.config.sustained_fraction

    def _over_memory(self, record: ProcessRecord) -> bool:
        return record.used_mem_gb > self.config.max_memory_usage_gb

    # --- Crypto miners ---

    def score_crypto_miner(self, ctx: _ProcessContext) -> CryptoMiner | None:
        w = self.config.indicator_weights
        name = ctx.record.process_name.lower()
        indicators: list[str] = []
        confidence = 0.0

        for pattern in sorted(self.config.crypto_miner_patterns):
            if pattern.lower() in name:
                indicators.append(f"Process name contains '{pattern}'")
                confidence += w.mining_pattern

        for miner in sorted(self.config.suspicious_process_names):
            if miner.lower() in name:
                indicators.append(f"Known miner process: {miner}")
                confidence += w.known_miner

        if self.is_sustained_high_utilization(ctx):
            indicators.append(
                f"Sustained GPU utilization above "
                f"{self.config.max_utilization_pct:.0f}% "
                f"({len(ctx.utilization_samples)} samples)"
            )
            confidence += w.sustained_utilization

        if ctx.duration_hours > self.config.mining_duration_hours:
            indicators.append(f"Long-running process: {ctx.duration_hours:.1f} hours")
            confidence += w.mining_duration

        if self._over_memory(ctx.record):
            indicators.append(f"High memory usage: {ctx.record.used_mem_gb:.1f} GB")
            confidence += w.high_memory

        confidence = _clip(confidence)
        if not indicators or confidence < self.config.min_confidence_threshold:
            return None
        return CryptoMiner(
            process=ctx.record,
            confidence=confidence,
            indicators=tuple(indicators),
        )

    # --- Suspicious processes ---

    def is_unusual_process_name(self, process_name: str) -> bool:
        name = process_name.lower()
        # Random-looking generated names
        if len(process_name) > 20 and sum(c.isdigit() for c in process_name) > 5:
            return True
        if any(p.lower() in name for p in self.config.unusual_name_patterns):
            return True
        return any(m.lower() in name for m in self.config.suspicious_process_names)

    def score_suspicious(self, ctx: _ProcessContext) -> SuspiciousProcess | None:
        w = self.config.indicator_weights
        record = ctx.record
        reasons: list[str] = []
        confidence = 0.0

        if self.is_unusual_process_name(record.process_name):
            reasons.append(f"Unusual process name pattern: {record.process_name}")
            confidence += w.unusual_name

        for cp, regex in self._custom:
            value = _pattern_subject(cp, record)
            if value and regex.search(value):
                reasons.append(f"Matched custom pattern '{cp.name}'")
                confidence += cp.confidence_boost

        if self._known_users and record.user.lower() not in self._known_users:
            reasons.append(f"Unknown user: {record.user}")
            confidence += w.unknown_user

        baseline = ctx.user_baseline_mb
        if (
            baseline is not None
            and baseline > 0
            and ctx.user_baseline_samples >= self.config.min_baseline_samples
            and record.used_mem_mb > baseline * self.config.baseline_anomaly_factor
        ):
            reasons.append(
                f"Memory {record.used_mem_mb / MB_PER_GB:.1f} GB is "
                f"{record.used_mem_mb / baseline:.1f}x the user's baseline"
            )
            confidence += w.baseline_anomaly

        if self.is_sustained_high_utilization(ctx):
            reasons.append(f"Excessive GPU utilization: {ctx.utilization_pct:.1f}%")
            confidence += w.excessive_utilization

        if self._over_memory(record):
            reasons.append(f"Excessive memory usage: {record.used_mem_gb:.1f} GB")
            confidence += w.excessive_memory

        confidence = _clip(confidence)
        if not reasons or confidence < self.config.min_confidence_threshold:
            return None
        return SuspiciousProcess(
            process=record,
            confidence=confidence,
            risk_level=determine_risk_level(confidence, self.config),
            reasons=tuple(reasons),
        )

    # --- Resource abuse ---

    def classify_abuse(self, ctx: _ProcessContext) -> list[ResourceAbuser]:
        record = ctx.record
        cfg = self.config
        found: list[ResourceAbuser] = []

        if self._over_memory(record):
            found.append(
                ResourceAbuser(
                    process=record,
                    abuse_type=AbuseType.MEMORY_HOG,
                    severity=overage(record.used_mem_gb, cfg.max_memory_usage_gb),
                    duration_hours=ctx.duration_hours,
                    reasons=(
                        f"Memory {record.used_mem_gb:.1f} GB over "
                        f"{cfg.max_memory_usage_gb:.1f} GB",
                    ),
                )
            )

        if ctx.duration_hours > cfg.max_duration_hours:
            found.append(
                ResourceAbuser(
                    process=record,
                    abuse_type=AbuseType.LONG_RUNNING,
                    severity=overage(ctx.duration_hours, cfg.max_duration_hours),
                    duration_hours=ctx.duration_hours,
                    reasons=(
                        f"Running {ctx.duration_hours:.1f}h over "
                        f"{cfg.max_duration_hours:.1f}h",
                    ),
                )
            )

        if self.is_sustained_high_utilization(ctx):
            found.append(
                ResourceAbuser(
                    process=record,
                    abuse_type=AbuseType.EXCESSIVE_UTILIZATION,
                    severity=overage(ctx.utilization_pct, cfg.max_utilization_pct),
                    duration_hours=ctx.duration_hours,
                    reasons=(
                        f"Utilization {ctx.utilization_pct:.1f}% sustained over "
                        f"{cfg.max_utilization_pct:.1f}%",
                    ),
                )
            )

        if record.user.lower() in self._blocked_users:
            found.append(
                ResourceAbuser(
                    process=record,
                    abuse_type=AbuseType.UNAUTHORIZED_ACCESS,
                    severity=1.0,
                    duration_hours=ctx.duration_hours,
                    reasons=(f"User {record.user} is barred from GPU use",),
                )
            )

        return found


def _pattern_subject(cp: CustomPattern, record: ProcessRecord) -> str | None:
    if cp.target is PatternTarget.PROCESS_NAME:
        return record.process_name
    if cp.target is PatternTarget.USER:
        return record.user
    return record.container
