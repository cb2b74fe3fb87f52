"""Webhook fired by CI (or a registry) after an image has been pushed."""
from __future__ import annotations

import json
import os
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request
from loguru import logger
from pydantic import ValidationError

from api.auth import verify_signature
from api.deps import (
    DeployInProgress,
    get_orchestrator,
    get_settings,
    limiter,
    resolve_image,
    run_exclusive,
)
from api.schemas import WebhookEvent
from core.config import Settings
from core.errors import ConfigError
from core.orchestrator import DeployOrchestrator

router = APIRouter()


def _deploy_task(orchestrator: DeployOrchestrator, image: str) -> None:
    try:
        result = run_exclusive(orchestrator, image)
    except DeployInProgress:
        logger.warning(f"Skipped webhook deploy of {image}: another deploy is running")
        return
    except Exception:
        logger.exception(f"Webhook deploy of {image} crashed")
        return
    if not result.ok:
        logger.error(f"Webhook deploy of {image} failed: {result.error}")


@router.post("/webhook")
@limiter.limit("5/minute")
async def webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_hub_signature_256: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
    orchestrator: DeployOrchestrator = Depends(get_orchestrator),
):
    """Verify the signature, resolve the image and schedule the rollout.

    The sender only learns that the deploy was accepted; the outcome is
    logged and exported as metrics.
    """
    body = await request.body()
    if not verify_signature(body, x_hub_signature_256, os.getenv("WEBHOOK_SECRET")):
        raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        event = WebhookEvent(**json.loads(body or b"{}"))
    except (ValueError, TypeError, ValidationError):
        raise HTTPException(status_code=400, detail="Malformed payload")

    if not event.image and not event.tag:
        raise HTTPException(status_code=422, detail="Payload names neither image nor tag")
    try:
        image = resolve_image(settings, event.image, event.tag)
    except ConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))

    background_tasks.add_task(_deploy_task, orchestrator, image)
    logger.info(f"Accepted webhook deploy of {image}")
    return {"status": "accepted", "image": image}
