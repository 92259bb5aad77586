"""FastAPI application factory for the gpuguard HTTP API."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gpuguard import __version__
from gpuguard.config import GpuGuardConfig
from gpuguard.errors import GpuGuardError
from gpuguard.guard.manager import GuardManager


def create_app(
    config: GpuGuardConfig | None = None,
    manager: GuardManager | None = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    config = config or GpuGuardConfig.load()

    app = FastAPI(
        title="gpuguard",
        version=__version__,
        docs_url="/api/docs",
    )

    # Store config and guard state in app state
    app.state.config = config
    app.state.manager = manager or GuardManager.from_config(config)

    @app.exception_handler(GpuGuardError)
    async def guard_error(request: Request, exc: GpuGuardError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    # Register API routers
    from gpuguard.web.api.guard import router as guard_router
    from gpuguard.web.api.policies import router as policies_router
    from gpuguard.web.api.rogue import router as rogue_router

    app.include_router(guard_router, prefix="/api")
    app.include_router(rogue_router, prefix="/api")
    app.include_router(policies_router, prefix="/api")

    return app
