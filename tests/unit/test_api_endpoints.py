import httpx
import pytest
from fastapi.testclient import TestClient

import api.deps as deps
from api.server import app
from core.config import Settings
from core.engine import IMAGE_LABEL, ContainerEngine
from core.orchestrator import DeployOrchestrator

API_KEY = "k3y-for-tests-0123456789abcdef!"


@pytest.fixture
def host(docker_host):
    docker_host.registry.update({"registry/app:v1", "registry/app:v2"})
    return docker_host


@pytest.fixture
def settings():
    return Settings(registry_url="registry", image_name="app", image_tag="v1", service_port=8080)


@pytest.fixture
def health_answers():
    return [200]


@pytest.fixture
def client(monkeypatch, host, settings, make_checker, scripted, health_answers):
    monkeypatch.setenv("API_KEY", API_KEY)
    orchestrator = DeployOrchestrator(
        ContainerEngine(client=host), settings, checker_factory=make_checker(scripted(health_answers))
    )
    app.dependency_overrides[deps.get_settings] = lambda: settings
    app.dependency_overrides[deps.get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def _deploy(client, body, key=API_KEY):
    return client.post("/deploy", json=body, headers={"X-API-Key": key})


@pytest.mark.asyncio
async def test_health_endpoint():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        r = await ac.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_deploy_requires_api_key(client):
    assert _deploy(client, {"image": "registry/app:v2"}, key="wrong").status_code == 403


def test_deploy_success(client, host):
    r = _deploy(client, {"image": "registry/app:v2"})
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "SUCCEEDED"
    assert body["image"] == "registry/app:v2"
    assert [c.labels[IMAGE_LABEL] for c in host.running()] == ["registry/app:v2"]


def test_deploy_defaults_to_configured_image(client, host):
    r = _deploy(client, {})
    assert r.status_code == 200
    assert r.json()["image"] == "registry/app:v1"


def test_deploy_pull_failure_is_502(client):
    r = _deploy(client, {"image": "registry/app:bad-tag"})
    assert r.status_code == 502
    assert r.json()["error_kind"] == "PullFailure"


@pytest.mark.parametrize("health_answers", [[]])
def test_deploy_health_timeout_is_502(client, host):
    r = _deploy(client, {"image": "registry/app:v2"})
    assert r.status_code == 502
    assert r.json()["error_kind"] == "HealthCheckTimeout"
    assert len(host.running()) == 1


def test_deploy_invalid_image_is_422(client, host):
    r = _deploy(client, {"image": "Not/Valid Image"})
    assert r.status_code == 422
    assert host.run_calls == []


def test_concurrent_deploy_is_409(client):
    assert deps.deploy_lock.acquire(blocking=False)
    try:
        r = _deploy(client, {"image": "registry/app:v2"})
    finally:
        deps.deploy_lock.release()
    assert r.status_code == 409


def test_status_lists_slot(client):
    _deploy(client, {"image": "registry/app:v2"})
    apps = client.get("/status").json()["apps"]
    assert apps == [
        {"name": "app-8080", "status": "running", "image": "registry/app:v2", "port": "8080"}
    ]


def test_status_docker_unreachable(client, host, monkeypatch):
    def boom(*a, **k):
        raise ConnectionError("ssh: connect to host web01 port 22: Connection refused")

    monkeypatch.setattr(host.containers, "list", boom)
    assert client.get("/status").status_code == 503


def test_metrics_exposed(client):
    _deploy(client, {"image": "registry/app:v2"})
    r = client.get("/metrics/")
    assert r.status_code == 200
    assert "deployer_deployments_total" in r.text


def test_lifespan_checks_secrets(monkeypatch):
    calls = []
    monkeypatch.setattr("api.server.check_secrets_on_startup", lambda strict: calls.append(strict))
    monkeypatch.setenv("STRICT_SECRETS", "true")
    with TestClient(app) as c:
        assert c.get("/health").status_code == 200
    assert calls == [True]


def test_invalid_configuration_is_reported(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SERVICE_PORT", "not-a-port")
    r = TestClient(app).get("/status")
    assert r.status_code == 500
    assert "SERVICE_PORT" in r.json()["detail"]
