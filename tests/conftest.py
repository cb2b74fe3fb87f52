# tests/conftest.py
import itertools
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import docker.errors
import pytest
import requests
from loguru import logger

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.health import HealthChecker  # noqa: E402


# ---------------------------------------------------------------------------
# Never contact a real docker daemon
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def patch_docker():
    fake_client = MagicMock()
    with (
        patch("docker.from_env", return_value=fake_client),
        patch("docker.DockerClient", return_value=fake_client),
    ):
        yield fake_client


@pytest.fixture(autouse=True)
def reset_api_state(monkeypatch):
    """Fresh settings/orchestrator singletons and no rate limiting per test."""
    import api.deps as deps

    monkeypatch.setattr(deps, "_settings", None)
    monkeypatch.setattr(deps, "_orchestrator", None)
    monkeypatch.setattr(deps.limiter, "enabled", False)
    deps.limiter.reset()
    yield


@pytest.fixture
def log_messages():
    """Capture loguru output (caplog only sees the stdlib logging module)."""
    messages = []
    handler_id = logger.add(lambda m: messages.append(str(m)), level="DEBUG")
    yield messages
    logger.remove(handler_id)


# ---------------------------------------------------------------------------
# In-memory docker host
# ---------------------------------------------------------------------------
class FakeContainer:
    _ids = itertools.count(1)

    def __init__(self, host, image, name, labels, ports, status="running"):
        self.host = host
        self.id = f"{next(self._ids):012d}abcdef"
        self.name = name
        self.labels = dict(labels or {})
        self.image = SimpleNamespace(tags=[image])
        self.ports = {
            k: [{"HostIp": "0.0.0.0", "HostPort": str(v)}] for k, v in (ports or {}).items()
        }
        self.status = status
        self.attrs = {"State": {"ExitCode": 1 if status == "exited" else 0}}

    @property
    def host_ports(self):
        return {int(b[0]["HostPort"]) for b in self.ports.values() if b}

    def reload(self):
        pass

    def stop(self, timeout=10):
        self.status = "exited"

    def remove(self):
        self.host.containers.items.remove(self)


class FakeContainers:
    def __init__(self, host):
        self.host = host
        self.items = []

    def list(self, all=False, filters=None):
        found = [c for c in self.items if all or c.status == "running"]
        label = (filters or {}).get("label")
        if label:
            key, _, value = label.partition("=")
            found = [
                c for c in found if key in c.labels and (not value or c.labels[key] == value)
            ]
        return found

    def get(self, name):
        for c in self.items:
            if c.name == name or c.id == name:
                return c
        raise docker.errors.NotFound(f"No such container: {name}")

    def run(self, image, detach=True, name=None, ports=None, labels=None, **kwargs):
        self.host.run_calls.append({"image": image, "name": name, "ports": ports, **kwargs})
        if any(c.name == name for c in self.items):
            raise docker.errors.APIError(f"Conflict: name {name} in use")
        wanted = set((ports or {}).values())
        for c in self.items:
            if c.status == "running" and c.host_ports & wanted:
                raise docker.errors.APIError("port is already allocated")
        status = "exited" if image in self.host.crashing else "running"
        container = FakeContainer(self.host, image, name, labels, ports, status=status)
        self.items.append(container)
        return container


class FakeImages:
    def __init__(self, host):
        self.host = host
        self.pulled = []
        self.built = []
        self.pushed = []

    def pull(self, repository, tag=None, auth_config=None):
        ref = f"{repository}:{tag}"
        if ref not in self.host.registry:
            raise docker.errors.ImageNotFound(f"manifest for {ref} not found")
        self.pulled.append(ref)
        return SimpleNamespace(tags=[ref])

    def build(self, path, tag, rm=True):
        self.built.append((path, tag))
        return SimpleNamespace(tags=[tag]), iter([{"stream": "built"}])

    def get(self, ref):
        image = MagicMock()
        image.tag.side_effect = lambda repo, tag=None: self.host.registry.add(f"{repo}:{tag}")
        return image

    def push(self, repository, tag=None, stream=True, decode=True, auth_config=None):
        ref = f"{repository}:{tag}"
        self.pushed.append(ref)
        self.host.registry.add(ref)
        return iter([{"status": "Pushed"}])


class FakeDockerHost:
    """Enough of ``docker.DockerClient`` to exercise a rollout end to end."""

    def __init__(self, registry=()):
        self.registry = set(registry)
        self.crashing = set()
        self.run_calls = []
        self.containers = FakeContainers(self)
        self.images = FakeImages(self)

    def running(self):
        return [c for c in self.containers.items if c.status == "running"]


@pytest.fixture
def docker_host():
    return FakeDockerHost()


# ---------------------------------------------------------------------------
# Health endpoint doubles
# ---------------------------------------------------------------------------
class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedSession:
    """Answers health probes from a list of status codes or exceptions."""

    def __init__(self, answers, default=None):
        self.answers = list(answers)
        self.default = default
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append(url)
        answer = self.answers.pop(0) if self.answers else self.default
        if answer is None:
            raise requests.ConnectionError(f"connection refused: {url}")
        if isinstance(answer, Exception):
            raise answer
        return SimpleNamespace(status_code=answer)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_checker(clock):
    """Build a checker factory whose probes are answered by ``session``."""

    def factory_for(session):
        def factory(target):
            return HealthChecker(
                timeout=target.health_timeout,
                interval=target.health_interval,
                session=session,
                clock=clock,
                sleep=clock.sleep,
            )

        return factory

    return factory_for


@pytest.fixture
def scripted():
    """The ScriptedSession class, for building probe answer scripts."""
    return ScriptedSession
