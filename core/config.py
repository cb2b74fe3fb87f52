# core/config.py
"""Deployment target and environment-driven settings."""
from __future__ import annotations

import os
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator, model_validator

from core.errors import ConfigError
from core.image import ImageReference
from core.network import validate_port

DEFAULT_HEALTH_PATH = "/health"
DEFAULT_HEALTH_TIMEOUT = 30.0
DEFAULT_HEALTH_INTERVAL = 5.0


def _check_port(value: Any) -> int:
    port = validate_port(value)
    if port is None:
        raise ValueError(f"invalid port: {value!r}")
    return port


class DeploymentTarget(BaseModel):
    """The single-instance service binding a rollout replaces."""

    image: str
    replicas: int = 1
    service_port: int = 80
    container_port: int = 80
    container_name: Optional[str] = None
    health_path: str = DEFAULT_HEALTH_PATH
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT
    health_interval: float = DEFAULT_HEALTH_INTERVAL
    health_host: str = "localhost"

    @field_validator("image")
    @classmethod
    def _valid_image(cls, v: str) -> str:
        return str(ImageReference.parse(v))

    @field_validator("replicas")
    @classmethod
    def _single_replica(cls, v: int) -> int:
        if v != 1:
            raise ValueError("only single-instance deployments are supported")
        return v

    @field_validator("service_port", "container_port", mode="before")
    @classmethod
    def _valid_port(cls, v: Any) -> int:
        return _check_port(v)

    @field_validator("health_path")
    @classmethod
    def _valid_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("health path must start with '/'")
        return v

    @field_validator("health_timeout", "health_interval")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @model_validator(mode="after")
    def _interval_within_timeout(self) -> "DeploymentTarget":
        if self.health_interval > self.health_timeout:
            raise ValueError("health_interval must not exceed health_timeout")
        return self

    @property
    def reference(self) -> ImageReference:
        return ImageReference.parse(self.image)

    @property
    def instance_name(self) -> str:
        return self.container_name or f"{self.reference.name}-{self.service_port}"

    @property
    def health_url(self) -> str:
        return f"http://{self.health_host}:{self.service_port}{self.health_path}"


class Settings(BaseModel):
    registry_url: Optional[str] = None
    image_name: Optional[str] = None
    image_tag: Optional[str] = None
    deploy_host: Optional[str] = None
    use_ssh_client: bool = False
    service_port: int = 80
    container_port: int = 80
    container_name: Optional[str] = None
    health_path: str = DEFAULT_HEALTH_PATH
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT
    health_interval: float = DEFAULT_HEALTH_INTERVAL
    health_host: Optional[str] = None
    push_latest: bool = True
    secrets_mode: str = "local"
    api_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    log_level: str = "INFO"

    @field_validator("service_port", "container_port", mode="before")
    @classmethod
    def _valid_port(cls, v: Any) -> int:
        return _check_port(v)

    @field_validator("secrets_mode")
    @classmethod
    def _valid_mode(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ("local", "aws"):
            raise ValueError("must be 'local' or 'aws'")
        return v

    @field_validator("deploy_host")
    @classmethod
    def _valid_host(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        scheme = urlparse(v).scheme
        if scheme not in ("ssh", "tcp", "unix", "http", "https"):
            raise ValueError(f"unsupported docker host: {v!r}")
        return v

    @classmethod
    def from_env(
        cls, env: Optional[Mapping[str, str]] = None, load_env_file: bool = True
    ) -> "Settings":
        """Read settings from ``env`` (default: process environment after ``.env``)."""
        if env is None:
            if load_env_file:
                load_dotenv()
            env = os.environ

        values = {}
        for field in cls.model_fields:
            raw = env.get(field.upper())
            if raw is not None and raw.strip() != "":
                values[field] = raw.strip()
        try:
            return cls(**values)
        except ValidationError as e:
            raise _as_config_error(e) from e

    @property
    def remote_hostname(self) -> Optional[str]:
        if not self.deploy_host:
            return None
        return urlparse(self.deploy_host).hostname

    def image_reference(self, tag: Optional[str] = None) -> ImageReference:
        env = {
            "REGISTRY_URL": self.registry_url or "",
            "IMAGE_NAME": self.image_name or "",
            "IMAGE_TAG": tag or self.image_tag or "",
        }
        return ImageReference.from_env(env)

    def target(self, image: "ImageReference | str") -> DeploymentTarget:
        try:
            return DeploymentTarget(
                image=str(image),
                service_port=self.service_port,
                container_port=self.container_port,
                container_name=self.container_name,
                health_path=self.health_path,
                health_timeout=self.health_timeout,
                health_interval=self.health_interval,
                health_host=self.health_host or self.remote_hostname or "localhost",
            )
        except ValidationError as e:
            raise _as_config_error(e) from e


def _as_config_error(exc: ValidationError) -> ConfigError:
    first = exc.errors()[0]
    loc = first.get("loc") or ("settings",)
    key = str(loc[0]).upper()
    return ConfigError(f"{key}: {first.get('msg')}", key=key)
