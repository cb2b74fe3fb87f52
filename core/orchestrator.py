# core/orchestrator.py
"""Single-instance rollout: pull, stop old, start new, wait for health.

There is no automatic rollback. A failed rollout reports which phase it
reached and which image it replaced; rolling back means deploying that image
again.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from loguru import logger

from core.config import DeploymentTarget, Settings
from core.engine import ContainerEngine
from core.errors import DeployError, ErrorKind
from core.health import HealthChecker, HealthReport
from core.image import ImageReference
from core.metrics import (
    DEPLOY_DURATION,
    DEPLOY_FAILURE_COUNTER,
    DEPLOYMENT_COUNTER,
    SLOT_OCCUPIED_GAUGE,
)
from core.secrets_manager import SecretsManager


class DeployPhase(str, Enum):
    PENDING = "PENDING"
    PULLING = "PULLING"
    STOPPING_OLD = "STOPPING_OLD"
    STARTING_NEW = "STARTING_NEW"
    HEALTH_CHECKING = "HEALTH_CHECKING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class DeployResult:
    image: str
    status: DeployPhase = DeployPhase.PENDING
    phase: DeployPhase = DeployPhase.PENDING
    phases: List[str] = field(default_factory=list)
    container_id: Optional[str] = None
    previous_image: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    failed_phase: Optional[DeployPhase] = None
    health: Optional[HealthReport] = None
    started_at: str = field(default_factory=_now)
    completed_at: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == DeployPhase.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image": self.image,
            "status": self.status.value,
            "phase": self.phase.value,
            "phases": self.phases,
            "container_id": self.container_id,
            "previous_image": self.previous_image,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "failed_phase": self.failed_phase.value if self.failed_phase else None,
            "health": self.health.to_dict() if self.health else None,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


def default_checker(target: DeploymentTarget) -> HealthChecker:
    return HealthChecker(timeout=target.health_timeout, interval=target.health_interval)


class DeployOrchestrator:
    """Replaces the instance bound to the service port with a new image.

    Phases run strictly in order and the new instance is only started once
    the old one has been stopped, so at most one instance holds the port.
    """

    def __init__(
        self,
        engine: ContainerEngine,
        settings: Optional[Settings] = None,
        checker_factory: Callable[[DeploymentTarget], HealthChecker] = default_checker,
    ):
        self.engine = engine
        self.settings = settings or Settings()
        self.checker_factory = checker_factory

    @classmethod
    def from_settings(
        cls, settings: Settings, secrets: Optional[SecretsManager] = None
    ) -> "DeployOrchestrator":
        """Orchestrator bound to the docker daemon named by ``DEPLOY_HOST``."""
        secrets = secrets or SecretsManager(settings.secrets_mode)
        engine = ContainerEngine(
            base_url=settings.deploy_host,
            use_ssh_client=settings.use_ssh_client,
            auth_config=secrets.registry_auth(),
        )
        return cls(engine, settings)

    def deploy(
        self,
        image_reference: Union[str, ImageReference],
        target: Optional[DeploymentTarget] = None,
    ) -> DeployResult:
        # Invalid references raise ConfigError here, before the host is touched
        target = target or self.settings.target(image_reference)
        ref = target.reference
        port = target.service_port
        result = DeployResult(image=str(ref))
        started = time.monotonic()
        logger.info(f"Deploying {ref} to port {port}")

        try:
            self._enter(result, DeployPhase.PULLING)
            self.engine.pull_image(ref)

            self._enter(result, DeployPhase.STOPPING_OLD)
            result.previous_image = self.engine.stop_slot(port, name=target.instance_name)
            SLOT_OCCUPIED_GAUGE.labels(port=str(port)).set(0)
            if result.previous_image:
                logger.info(f"Stopped previous instance running {result.previous_image}")

            self._enter(result, DeployPhase.STARTING_NEW)
            container = self.engine.start_instance(target)
            result.container_id = container.id
            SLOT_OCCUPIED_GAUGE.labels(port=str(port)).set(1)

            self._enter(result, DeployPhase.HEALTH_CHECKING)
            result.health = self.checker_factory(target).wait_until_healthy(target.health_url)
            if not result.health.healthy:
                # a crash loop behind a refused port is a start failure
                self.engine.check_alive(container)
                raise DeployError(
                    ErrorKind.HEALTH_CHECK_TIMEOUT,
                    f"{target.health_url} not healthy within {target.health_timeout:g}s "
                    f"({result.health.attempts} probes); instance left running",
                    phase=DeployPhase.HEALTH_CHECKING.value,
                )
        except DeployError as e:
            self._fail(result, e)
        else:
            self._enter(result, DeployPhase.SUCCEEDED)
            result.status = DeployPhase.SUCCEEDED
            DEPLOYMENT_COUNTER.labels(outcome="succeeded").inc()
            logger.success(f"Deployed {ref} ({(result.container_id or '')[:12]})")
        finally:
            result.completed_at = _now()
            DEPLOY_DURATION.observe(time.monotonic() - started)

        return result

    def _enter(self, result: DeployResult, phase: DeployPhase) -> None:
        result.phase = phase
        result.phases.append(phase.value)
        logger.debug(f"[{result.image}] -> {phase.value}")

    def _fail(self, result: DeployResult, error: DeployError) -> None:
        failed_in = result.phase
        result.failed_phase = failed_in
        result.error_kind = error.kind
        result.error = error.message
        result.status = DeployPhase.FAILED
        self._enter(result, DeployPhase.FAILED)
        DEPLOYMENT_COUNTER.labels(outcome="failed").inc()
        DEPLOY_FAILURE_COUNTER.labels(kind=error.kind.value).inc()
        logger.error(f"Deploy of {result.image} failed in {failed_in.value}: {error}")
