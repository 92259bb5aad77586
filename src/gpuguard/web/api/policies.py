"""REST API for policy management."""

from __future__ import annotations

from fastapi import APIRouter, Request

from gpuguard.policy.loader import policy_set_to_dict
from gpuguard.policy.models import (
    GpuPolicy,
    GroupPolicy,
    LimitSet,
    TimePolicy,
    TimeWindow,
    UserPolicy,
)
from gpuguard.web.api.schemas import (
    GpuPolicyIn,
    GroupPolicyIn,
    TimePolicyIn,
    TimeWindowIn,
    UserPolicyIn,
)

router = APIRouter(tags=["policies"])


def _window(body: TimeWindowIn) -> TimeWindow:
    return TimeWindow(
        start=body.start,
        end=body.end,
        days_of_week=frozenset(body.days_of_week),
    )


@router.get("/policies")
def list_policies(request: Request):
    return policy_set_to_dict(request.app.state.manager.policies())


@router.post("/policies/users")
def add_user_policy(body: UserPolicyIn, request: Request):
    request.app.state.manager.add_user_policy(
        UserPolicy(
            username=body.username,
            limits=LimitSet(
                memory_limit_gb=body.memory_limit_gb,
                utilization_limit_pct=body.utilization_limit_pct,
                duration_limit_hours=body.duration_limit_hours,
                max_concurrent_processes=body.max_concurrent_processes,
            ),
            allowed_gpus=frozenset(body.allowed_gpus),
            blocked_gpus=frozenset(body.blocked_gpus),
            description=body.description,
        )
    )
    return {"status": "stored", "name": body.username}


@router.delete("/policies/users/{username}")
def remove_user_policy(username: str, request: Request):
    request.app.state.manager.remove_user_policy(username)
    return {"status": "removed", "name": username}


@router.post("/policies/groups")
def add_group_policy(body: GroupPolicyIn, request: Request):
    request.app.state.manager.add_group_policy(
        GroupPolicy(
            group_name=body.group_name,
            members=frozenset(body.members),
            total_memory_limit_gb=body.total_memory_limit_gb,
            max_concurrent_processes=body.max_concurrent_processes,
            gpus=frozenset(body.gpus),
            description=body.description,
        )
    )
    return {"status": "stored", "name": body.group_name}


@router.delete("/policies/groups/{group_name}")
def remove_group_policy(group_name: str, request: Request):
    request.app.state.manager.remove_group_policy(group_name)
    return {"status": "removed", "name": group_name}


@router.post("/policies/gpus")
def add_gpu_policy(body: GpuPolicyIn, request: Request):
    window = body.maintenance_window
    request.app.state.manager.add_gpu_policy(
        GpuPolicy(
            gpu_index=body.gpu_index,
            max_memory_gb=body.max_memory_gb,
            max_utilization_pct=body.max_utilization_pct,
            reserved_memory_gb=body.reserved_memory_gb,
            allowed_users=frozenset(body.allowed_users),
            blocked_users=frozenset(body.blocked_users),
            maintenance_window=_window(window) if window else None,
            maintenance_message=body.maintenance_message,
        )
    )
    return {"status": "stored", "name": str(body.gpu_index)}


@router.delete("/policies/gpus/{gpu_index}")
def remove_gpu_policy(gpu_index: int, request: Request):
    request.app.state.manager.remove_gpu_policy(gpu_index)
    return {"status": "removed", "name": str(gpu_index)}


@router.post("/policies/time")
def add_time_policy(body: TimePolicyIn, request: Request):
    request.app.state.manager.add_time_policy(
        TimePolicy(
            name=body.name,
            window=_window(body.window),
            limits=LimitSet(
                memory_limit_gb=body.memory_limit_gb,
                utilization_limit_pct=body.utilization_limit_pct,
                duration_limit_hours=body.duration_limit_hours,
                max_concurrent_processes=body.max_concurrent_processes,
            ),
            description=body.description,
        )
    )
    return {"status": "stored", "name": body.name}


@router.delete("/policies/time/{name}")
def remove_time_policy(name: str, request: Request):
    request.app.state.manager.remove_time_policy(name)
    return {"status": "removed", "name": name}
