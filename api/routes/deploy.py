"""Deploy trigger and slot status routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from api.deps import (
    DeployInProgress,
    get_orchestrator,
    get_settings,
    limiter,
    require_api_key,
    resolve_image,
    run_exclusive,
)
from api.schemas import DeployRequest
from core.config import Settings
from core.errors import ConfigError
from core.orchestrator import DeployOrchestrator

router = APIRouter()


@router.get("/status")
def status(orchestrator: DeployOrchestrator = Depends(get_orchestrator)):
    try:
        apps = orchestrator.engine.list_apps()
    except Exception as e:
        logger.warning(f"Could not reach docker daemon: {e}")
        raise HTTPException(status_code=503, detail="Docker daemon unreachable")
    return {"apps": apps}


@router.post("/deploy", dependencies=[Depends(require_api_key)])
@limiter.limit("10/minute")
def deploy(
    request: Request,
    body: DeployRequest,
    settings: Settings = Depends(get_settings),
    orchestrator: DeployOrchestrator = Depends(get_orchestrator),
):
    """Run a rollout and answer once it has succeeded or failed.

    Blocks for up to the health check timeout. 502 signals a failed rollout;
    the body carries the phase and error kind.
    """
    try:
        image = resolve_image(settings, body.image)
        result = run_exclusive(orchestrator, image)
    except ConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except DeployInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))

    return JSONResponse(status_code=200 if result.ok else 502, content=result.to_dict())
