"""Request bodies shared by the API routers."""

from __future__ import annotations

from datetime import datetime, time

from pydantic import BaseModel, Field

from gpuguard.snapshot.loader import snapshot_from_dict
from gpuguard.snapshot.models import Snapshot


class GpuIn(BaseModel):
    index: int
    name: str = ""
    memory_used_mb: float = 0.0
    memory_total_mb: float
    utilization_pct: float = 0.0
    temperature_c: float = 0.0
    power_w: float = 0.0


class ProcessIn(BaseModel):
    gpu_index: int
    pid: int
    user: str = "unknown"
    process_name: str = "unknown"
    used_mem_mb: float = 0.0
    start_time: datetime | None = None
    container: str | None = None


class SnapshotIn(BaseModel):
    host: str = "localhost"
    timestamp: datetime
    gpus: list[GpuIn] = Field(default_factory=list)
    processes: list[ProcessIn] = Field(default_factory=list)
    observe: bool = False

    def to_snapshot(self) -> Snapshot:
        return snapshot_from_dict(self.model_dump(exclude={"observe"}))


class UserPolicyIn(BaseModel):
    username: str
    memory_limit_gb: float | None = None
    utilization_limit_pct: float | None = None
    duration_limit_hours: float | None = None
    max_concurrent_processes: int | None = None
    allowed_gpus: list[int] = Field(default_factory=list)
    blocked_gpus: list[int] = Field(default_factory=list)
    description: str = ""


class GroupPolicyIn(BaseModel):
    group_name: str
    members: list[str]
    total_memory_limit_gb: float | None = None
    max_concurrent_processes: int | None = None
    gpus: list[int] = Field(default_factory=list)
    description: str = ""


class TimeWindowIn(BaseModel):
    start: time
    end: time
    days_of_week: list[int] = Field(default_factory=list)


class GpuPolicyIn(BaseModel):
    gpu_index: int
    max_memory_gb: float | None = None
    max_utilization_pct: float | None = None
    reserved_memory_gb: float = 0.0
    allowed_users: list[str] = Field(default_factory=list)
    blocked_users: list[str] = Field(default_factory=list)
    maintenance_window: TimeWindowIn | None = None
    maintenance_message: str = ""


class TimePolicyIn(BaseModel):
    name: str
    window: TimeWindowIn
    memory_limit_gb: float | None = None
    utilization_limit_pct: float | None = None
    duration_limit_hours: float | None = None
    max_concurrent_processes: int | None = None
    description: str = ""


class NameIn(BaseModel):
    name: str


class EnabledIn(BaseModel):
    enabled: bool


class EnforcementIn(BaseModel):
    soft_enforcement: bool | None = None
    hard_enforcement: bool | None = None
