import os

import pytest

from core.config import Settings
from core.engine import ContainerEngine
from core.errors import ErrorKind
from core.orchestrator import DeployOrchestrator

pytestmark = pytest.mark.skipif(
    os.getenv("RUN_INTEGRATION") != "1",
    reason="Integration tests disabled (set RUN_INTEGRATION=1)",
)

# Any image answering GET /health on its container port
IMAGE = os.getenv("INTEGRATION_IMAGE", "ghcr.io/example/site:latest")
PORT = int(os.getenv("INTEGRATION_PORT", "18080"))


@pytest.fixture
def orchestrator():
    # docker.from_env is patched for every test; docker.client keeps the real one
    import docker.client

    settings = Settings(
        service_port=PORT,
        container_port=int(os.getenv("INTEGRATION_CONTAINER_PORT", "80")),
        health_timeout=30,
        health_interval=2,
    )
    host = os.getenv("DEPLOY_HOST")
    client = docker.client.DockerClient(base_url=host) if host else docker.client.from_env()
    engine = ContainerEngine(client=client)
    yield DeployOrchestrator(engine, settings)
    engine.stop_slot(PORT)


def test_deploy_and_replace(orchestrator):
    first = orchestrator.deploy(IMAGE)
    assert first.ok, first.error

    second = orchestrator.deploy(IMAGE)
    assert second.ok, second.error
    assert second.previous_image == first.image
    assert len(orchestrator.engine.find_slot_instances(PORT)) == 1


def test_unknown_tag_is_pull_failure(orchestrator):
    result = orchestrator.deploy(IMAGE.rsplit(":", 1)[0] + ":does-not-exist-0000000")
    assert result.error_kind == ErrorKind.PULL_FAILURE
