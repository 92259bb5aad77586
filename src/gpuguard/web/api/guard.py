"""REST API for guard status, mode toggles and policy checks."""

from __future__ import annotations

from fastapi import APIRouter, Request

from gpuguard.report import check_result_to_dict, status_to_dict
from gpuguard.web.api.schemas import EnabledIn, EnforcementIn, SnapshotIn

router = APIRouter(tags=["guard"])


@router.get("/guard/status")
def get_status(request: Request):
    return status_to_dict(request.app.state.manager.status())


@router.post("/guard/dry-run/toggle")
def toggle_dry_run(request: Request):
    manager = request.app.state.manager
    mode = manager.toggle_dry_run()
    return {"mode": mode.value, "dry_run": manager.status().dry_run}


@router.post("/guard/enabled")
def set_enabled(body: EnabledIn, request: Request):
    manager = request.app.state.manager
    manager.set_enabled(body.enabled)
    return status_to_dict(manager.status())


@router.post("/guard/enforcement")
def set_enforcement(body: EnforcementIn, request: Request):
    manager = request.app.state.manager
    if body.soft_enforcement is not None:
        manager.set_soft_enforcement(body.soft_enforcement)
    if body.hard_enforcement is not None:
        manager.set_hard_enforcement(body.hard_enforcement)
    return status_to_dict(manager.status())


@router.post("/guard/check")
def run_check(body: SnapshotIn, request: Request):
    manager = request.app.state.manager
    result = manager.check(body.to_snapshot(), observe=body.observe)
    return check_result_to_dict(result)


@router.post("/guard/simulate")
def run_simulate(body: SnapshotIn, request: Request):
    result = request.app.state.manager.simulate(body.to_snapshot())
    return check_result_to_dict(result)
