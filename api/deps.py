"""Shared dependencies for the HTTP routes."""
from __future__ import annotations

import threading
from typing import Optional

from fastapi import Depends, HTTPException, Security
from fastapi.security import APIKeyHeader
from loguru import logger
from slowapi import Limiter
from slowapi.util import get_remote_address

from api.auth import verify_api_key
from core.config import Settings
from core.errors import ConfigError
from core.image import ImageReference
from core.orchestrator import DeployOrchestrator, DeployResult

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

limiter = Limiter(key_func=get_remote_address)

# One rollout at a time per service process
deploy_lock = threading.Lock()

_settings: Optional[Settings] = None
_orchestrator: Optional[DeployOrchestrator] = None


class DeployInProgress(RuntimeError):
    pass


def require_api_key(api_key: Optional[str] = Security(api_key_header)) -> bool:
    if not verify_api_key(api_key):
        raise HTTPException(status_code=403, detail="Invalid API Key")
    return True


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        try:
            _settings = Settings.from_env()
        except ConfigError as e:
            logger.error(f"Invalid configuration: {e}")
            raise HTTPException(status_code=500, detail=f"Invalid configuration: {e}")
    return _settings


def get_orchestrator(settings: Settings = Depends(get_settings)) -> DeployOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = DeployOrchestrator.from_settings(settings)
    return _orchestrator


def run_exclusive(orchestrator: DeployOrchestrator, image: str) -> DeployResult:
    """Run one deploy, refusing to start while another is in flight."""
    if not deploy_lock.acquire(blocking=False):
        raise DeployInProgress("a deployment is already running")
    try:
        return orchestrator.deploy(image)
    finally:
        deploy_lock.release()


def resolve_image(settings: Settings, image: Optional[str] = None, tag: Optional[str] = None) -> str:
    """Explicit reference, else the configured repository at ``tag`` (or ``IMAGE_TAG``)."""
    if image:
        return str(ImageReference.parse(image))
    return str(settings.image_reference(tag))
