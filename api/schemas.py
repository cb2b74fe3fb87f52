from typing import Optional

from pydantic import BaseModel, Field


class DeployRequest(BaseModel):
    image: Optional[str] = Field(
        None, description="Image reference; defaults to REGISTRY_URL/IMAGE_NAME:IMAGE_TAG"
    )


class WebhookEvent(BaseModel):
    """Notification from CI or the registry that a new image was pushed."""

    image: Optional[str] = None
    tag: Optional[str] = None
