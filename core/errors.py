# core/errors.py
"""Error taxonomy for builds, pushes and rollouts."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Why a deploy (or pipeline stage) failed."""

    PULL_FAILURE = "PullFailure"
    START_FAILURE = "StartFailure"
    HEALTH_CHECK_TIMEOUT = "HealthCheckTimeout"
    BUILD_FAILURE = "BuildFailure"
    PUSH_FAILURE = "PushFailure"


class ConfigError(ValueError):
    """Raised when settings or an image reference cannot be used."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class DeployError(Exception):
    """A terminal failure inside one deploy or pipeline run."""

    def __init__(self, kind: ErrorKind, message: str, phase: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.phase = phase

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"
