# core/pipeline.py
"""CI pipeline: build the image, push it, deploy it to the remote host."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from core.config import Settings
from core.engine import ContainerEngine
from core.errors import DeployError, ErrorKind
from core.git_manager import GitManager
from core.image import DEFAULT_TAG, build_tag
from core.metrics import DEPLOY_FAILURE_COUNTER
from core.orchestrator import DeployOrchestrator, DeployResult


@dataclass
class PipelineResult:
    image: Optional[str] = None
    stages: List[str] = field(default_factory=list)
    failed_stage: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    deploy: Optional[DeployResult] = None

    @property
    def ok(self) -> bool:
        return self.failed_stage is None and self.deploy is not None and self.deploy.ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image": self.image,
            "stages": self.stages,
            "failed_stage": self.failed_stage,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "deploy": self.deploy.to_dict() if self.deploy else None,
        }


class Pipeline:
    """Runs build → push → deploy, stopping at the first failed stage.

    ``builder`` talks to the local daemon where the source lives; the
    orchestrator's engine talks to the deploy host.
    """

    def __init__(
        self,
        settings: Settings,
        builder: ContainerEngine,
        orchestrator: DeployOrchestrator,
        git_manager: Optional[GitManager] = None,
    ):
        self.settings = settings
        self.builder = builder
        self.orchestrator = orchestrator
        self.git_manager = git_manager

    def resolve_tag(
        self, context_dir: str, branch: Optional[str] = None, commit: Optional[str] = None
    ) -> str:
        if self.settings.image_tag:
            return self.settings.image_tag
        if branch and commit:
            return build_tag(branch, commit)
        gm = self.git_manager or GitManager(context_dir)
        return gm.image_tag()

    def run(
        self, context_dir: str, branch: Optional[str] = None, commit: Optional[str] = None
    ) -> PipelineResult:
        result = PipelineResult()
        ref = self.settings.image_reference(self.resolve_tag(context_dir, branch, commit))
        result.image = str(ref)
        logger.info(f"Pipeline for {ref} from {context_dir}")

        try:
            result.stages.append("build")
            self.builder.build_image(context_dir, ref)

            result.stages.append("push")
            self.builder.push_image(ref)
            if self.settings.push_latest and not ref.is_latest:
                alias = ref.with_tag(DEFAULT_TAG)
                self.builder.tag_image(ref, alias)
                self.builder.push_image(alias)
        except DeployError as e:
            return self._fail(result, e)

        result.stages.append("deploy")
        result.deploy = self.orchestrator.deploy(ref)
        if not result.deploy.ok:
            result.failed_stage = "deploy"
            result.error_kind = result.deploy.error_kind
            result.error = result.deploy.error
            return result

        logger.success(f"Pipeline for {ref} finished")
        return result

    def _fail(self, result: PipelineResult, error: DeployError) -> PipelineResult:
        result.failed_stage = result.stages[-1]
        result.error_kind = error.kind
        result.error = error.message
        DEPLOY_FAILURE_COUNTER.labels(kind=error.kind.value).inc()
        logger.error(f"Pipeline stage '{result.failed_stage}' failed: {error}")
        return result

