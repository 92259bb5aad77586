"""REST API for rogue process detection."""

from __future__ import annotations

from fastapi import APIRouter, Request

from gpuguard.detection.config import rogue_config_to_dict
from gpuguard.report import scan_result_to_dict
from gpuguard.web.api.schemas import NameIn, SnapshotIn

router = APIRouter(tags=["rogue"])


@router.post("/rogue/scan")
def run_scan(body: SnapshotIn, request: Request):
    manager = request.app.state.manager
    result = manager.scan(body.to_snapshot(), observe=body.observe)
    return scan_result_to_dict(result, alert=manager.should_alert(result))


@router.get("/rogue/config")
def get_config(request: Request):
    return rogue_config_to_dict(request.app.state.manager.rogue_config)


@router.post("/rogue/whitelist/users")
def whitelist_user(body: NameIn, request: Request):
    manager = request.app.state.manager
    manager.whitelist_user(body.name)
    return {"user_whitelist": sorted(manager.rogue_config.user_whitelist)}


@router.delete("/rogue/whitelist/users/{name}")
def unwhitelist_user(name: str, request: Request):
    manager = request.app.state.manager
    manager.unwhitelist_user(name)
    return {"user_whitelist": sorted(manager.rogue_config.user_whitelist)}


@router.post("/rogue/whitelist/processes")
def whitelist_process(body: NameIn, request: Request):
    manager = request.app.state.manager
    manager.whitelist_process(body.name)
    return {"process_whitelist": sorted(manager.rogue_config.process_whitelist)}


@router.delete("/rogue/whitelist/processes/{name}")
def unwhitelist_process(name: str, request: Request):
    manager = request.app.state.manager
    manager.unwhitelist_process(name)
    return {"process_whitelist": sorted(manager.rogue_config.process_whitelist)}
