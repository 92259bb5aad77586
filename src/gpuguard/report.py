"""Plain-data renderings of results for JSON output and the HTTP API."""

from __future__ import annotations

from gpuguard.detection.models import (
    CryptoMiner,
    ResourceAbuser,
    RogueScanResult,
    SuspiciousProcess,
)
from gpuguard.enforcement.models import CheckResult, EnforcementIntent, GuardStatus
from gpuguard.policy.models import PolicyWarning, Violation
from gpuguard.snapshot.models import ProcessRecord


def _process(p: ProcessRecord) -> dict:
    return {
        "gpu_index": p.gpu_index,
        "pid": p.pid,
        "user": p.user,
        "process_name": p.process_name,
        "used_mem_mb": p.used_mem_mb,
    }


def _miner(f: CryptoMiner) -> dict:
    return {
        "process": _process(f.process),
        "confidence": round(f.confidence, 4),
        "indicators": list(f.indicators),
    }


def _suspicious(f: SuspiciousProcess) -> dict:
    return {
        "process": _process(f.process),
        "confidence": round(f.confidence, 4),
        "risk_level": f.risk_level.value,
        "reasons": list(f.reasons),
    }


def _abuser(f: ResourceAbuser) -> dict:
    return {
        "process": _process(f.process),
        "abuse_type": f.abuse_type.value,
        "severity": round(f.severity, 4),
        "duration_hours": round(f.duration_hours, 2),
        "reasons": list(f.reasons),
    }


def scan_result_to_dict(result: RogueScanResult, alert: bool | None = None) -> dict:
    data = {
        "timestamp": result.timestamp.isoformat(),
        "host": result.host,
        "risk_score": round(result.risk_score, 4),
        "crypto_miners": [_miner(f) for f in result.crypto_miners],
        "suspicious_processes": [_suspicious(f) for f in result.suspicious_processes],
        "resource_abusers": [_abuser(f) for f in result.resource_abusers],
        "recommendations": list(result.recommendations),
    }
    if alert is not None:
        data["alert"] = alert
    return data


def violation_to_dict(v: Violation) -> dict:
    return {
        "id": v.id,
        "timestamp": v.timestamp.isoformat(),
        "user": v.user,
        "kind": v.kind.value,
        "severity": v.severity.value,
        "message": v.message,
        "gpu_id": v.gpu_id,
        "process_pid": v.process_pid,
        "observed": v.observed,
        "limit": v.limit,
        "policy_name": v.policy_name,
        "group": v.group,
    }


def warning_to_dict(w: PolicyWarning) -> dict:
    return {
        "id": w.id,
        "timestamp": w.timestamp.isoformat(),
        "user": w.user,
        "kind": w.kind.value,
        "message": w.message,
        "gpu_id": w.gpu_id,
        "process_pid": w.process_pid,
        "observed": w.observed,
        "limit": w.limit,
        "policy_name": w.policy_name,
        "group": w.group,
    }


def intent_to_dict(i: EnforcementIntent) -> dict:
    return {
        "action": i.action.value,
        "user": i.target.user,
        "gpu_id": i.target.gpu_id,
        "process_pid": i.target.process_pid,
        "violation_id": i.violation_id,
        "severity": i.severity.value,
        "reason": i.reason,
        "simulated": i.simulated,
    }


def check_result_to_dict(result: CheckResult) -> dict:
    return {
        "timestamp": result.timestamp.isoformat(),
        "enabled": result.enabled,
        "simulated": result.simulated,
        "violations": [violation_to_dict(v) for v in result.violations],
        "warnings": [warning_to_dict(w) for w in result.warnings],
        "intents": [intent_to_dict(i) for i in result.intents],
        "dispatched": result.dispatched,
    }


def status_to_dict(status: GuardStatus) -> dict:
    return {
        "enabled": status.enabled,
        "mode": status.mode.value,
        "dry_run": status.dry_run,
        "soft_enforcement": status.soft_enforcement,
        "hard_enforcement": status.hard_enforcement,
        "cycles": status.cycles,
        "total_violations": status.total_violations,
        "total_warnings": status.total_warnings,
        "total_intents": status.total_intents,
        "last_check": status.last_check.isoformat() if status.last_check else None,
        "violations_by_severity": dict(status.violations_by_severity),
        "policy_counts": dict(status.policy_counts),
        "recent_violations": [violation_to_dict(v) for v in status.recent_violations],
        "recent_warnings": [warning_to_dict(w) for w in status.recent_warnings],
    }
