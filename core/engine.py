# core/engine.py
from typing import Any, Dict, List, Optional

from loguru import logger

from core.config import DeploymentTarget
from core.errors import DeployError, ErrorKind
from core.image import ImageReference
from core.network import parse_docker_port_mapping

SLOT_LABEL = "deployer.slot"
IMAGE_LABEL = "deployer.image"

# Docker expresses health check durations in nanoseconds
_NS = 1_000_000_000

_DEAD_STATES = ("exited", "dead", "removing")


class ContainerEngine:
    """Container runtime operations on the deploy host.

    With ``base_url="ssh://user@host"`` every call runs on the remote daemon
    over an SSH session authenticated by the user's key pair.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        base_url: Optional[str] = None,
        use_ssh_client: bool = False,
        auth_config: Optional[Dict[str, str]] = None,
    ):
        self._client = client
        self.base_url = base_url
        self.use_ssh_client = use_ssh_client
        self.auth_config = auth_config

    def _ensure_client(self):
        if self._client is None:
            import docker

            if self.base_url:
                logger.debug(f"Connecting to docker daemon at {self.base_url}")
                self._client = docker.DockerClient(
                    base_url=self.base_url, use_ssh_client=self.use_ssh_client
                )
            else:
                self._client = docker.from_env()
        return self._client

    @property
    def client(self):
        return self._ensure_client()

    @client.setter
    def client(self, value):
        self._client = value

    # ------------------------------------------------------------------
    # Slot inspection
    # ------------------------------------------------------------------

    def list_apps(self) -> List[Dict]:
        containers = self.client.containers.list(all=True, filters={"label": SLOT_LABEL})
        apps = []
        for c in containers:
            labels = getattr(c, "labels", None) or {}
            apps.append(
                {
                    "name": getattr(c, "name", None),
                    "status": getattr(c, "status", None),
                    "image": labels.get(IMAGE_LABEL),
                    "port": labels.get(SLOT_LABEL),
                }
            )
        return apps

    def find_slot_instances(self, port: int) -> List[Any]:
        return self.client.containers.list(
            all=True, filters={"label": f"{SLOT_LABEL}={port}"}
        )

    def current_image(self, port: int) -> Optional[str]:
        """Image reference of the running instance bound to ``port``, if any."""
        for c in self.find_slot_instances(port):
            if getattr(c, "status", None) == "running":
                return _image_of(c)
        return None

    # ------------------------------------------------------------------
    # Rollout steps
    # ------------------------------------------------------------------

    def pull_image(self, ref: ImageReference):
        try:
            image = self.client.images.pull(
                ref.repository, tag=ref.tag, auth_config=self.auth_config
            )
        except Exception as e:
            raise DeployError(
                ErrorKind.PULL_FAILURE, f"Could not pull {ref}: {e}", phase="PULLING"
            ) from e
        logger.info(f"Pulled {ref}")
        return image

    def stop_slot(self, port: int, name: Optional[str] = None, timeout: int = 10) -> Optional[str]:
        """Stop and remove whatever occupies the slot for ``port``.

        Also clears a leftover container called ``name`` so the new instance
        can take that name. Returns the image the running instance served, or
        None when the slot was empty.
        """
        import docker.errors

        try:
            containers = list(self.find_slot_instances(port))
            if name and not any(getattr(c, "name", None) == name for c in containers):
                try:
                    containers.append(self.client.containers.get(name))
                except docker.errors.NotFound:
                    pass
        except Exception as e:
            raise DeployError(
                ErrorKind.START_FAILURE,
                f"Could not free port {port}, listing its instances failed: {e}",
                phase="STOPPING_OLD",
            ) from e

        previous = None
        for c in containers:
            if getattr(c, "status", None) == "running" and previous is None:
                previous = _image_of(c)
            try:
                c.stop(timeout=timeout)
                c.remove()
            except docker.errors.NotFound:
                continue
            except Exception as e:
                raise DeployError(
                    ErrorKind.START_FAILURE,
                    f"Could not free port {port}, stopping {getattr(c, 'name', c)} failed: {e}",
                    phase="STOPPING_OLD",
                ) from e
            logger.info(f"Stopped {getattr(c, 'name', None) or getattr(c, 'id', '?')}")
        return previous

    def start_instance(self, target: DeploymentTarget):
        ref = target.reference
        run_kwargs = {
            "image": str(ref),
            "detach": True,
            "name": target.instance_name,
            "ports": {f"{target.container_port}/tcp": target.service_port},
            "labels": {
                SLOT_LABEL: str(target.service_port),
                IMAGE_LABEL: str(ref),
            },
            "restart_policy": {"Name": "unless-stopped"},
            "healthcheck": runtime_healthcheck(target),
        }
        try:
            container = self.client.containers.run(**run_kwargs)
            container.reload()
        except Exception as e:
            raise DeployError(
                ErrorKind.START_FAILURE, f"Could not start {ref}: {e}", phase="STARTING_NEW"
            ) from e

        if container.status in _DEAD_STATES:
            exit_code = (container.attrs or {}).get("State", {}).get("ExitCode")
            raise DeployError(
                ErrorKind.START_FAILURE,
                f"{target.instance_name} exited immediately (status={container.status}, "
                f"exit code={exit_code})",
                phase="STARTING_NEW",
            )
        logger.info(
            f"Started {target.instance_name} ({container.id[:12]}) on port "
            f"{parse_docker_port_mapping(container.ports) or target.service_port}"
        )
        return container

    def check_alive(self, container, phase: str = "HEALTH_CHECKING") -> None:
        """Raise START_FAILURE if ``container`` died or restarted since it was started."""
        import docker.errors

        name = getattr(container, "name", None) or container.id[:12]
        try:
            container.reload()
        except docker.errors.NotFound as e:
            raise DeployError(
                ErrorKind.START_FAILURE, f"{name} disappeared after start", phase=phase
            ) from e
        except Exception as e:
            logger.warning(f"Could not inspect {name} after failed health check: {e}")
            return

        attrs = container.attrs if isinstance(container.attrs, dict) else {}
        restarts = attrs.get("RestartCount") or 0
        if container.status in _DEAD_STATES or container.status == "restarting" or restarts:
            exit_code = attrs.get("State", {}).get("ExitCode")
            raise DeployError(
                ErrorKind.START_FAILURE,
                f"{name} crashed after start (status={container.status}, "
                f"exit code={exit_code}, restarts={restarts})",
                phase=phase,
            )

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def build_image(self, path: str, ref: ImageReference) -> str:
        try:
            self.client.images.build(path=path, tag=str(ref), rm=True)
        except Exception as e:
            raise DeployError(ErrorKind.BUILD_FAILURE, f"Build of {ref} failed: {e}") from e
        logger.info(f"Built {ref} from {path}")
        return str(ref)

    def tag_image(self, source: ImageReference, alias: ImageReference) -> None:
        try:
            self.client.images.get(str(source)).tag(alias.repository, tag=alias.tag)
        except Exception as e:
            raise DeployError(
                ErrorKind.BUILD_FAILURE, f"Could not tag {source} as {alias}: {e}"
            ) from e

    def push_image(self, ref: ImageReference) -> None:
        try:
            stream = self.client.images.push(
                ref.repository,
                tag=ref.tag,
                stream=True,
                decode=True,
                auth_config=self.auth_config,
            )
            for line in stream:
                # push errors arrive in-band, the HTTP call itself succeeds
                if isinstance(line, dict) and line.get("error"):
                    raise DeployError(
                        ErrorKind.PUSH_FAILURE, f"Push of {ref} failed: {line['error']}"
                    )
        except DeployError:
            raise
        except Exception as e:
            raise DeployError(ErrorKind.PUSH_FAILURE, f"Push of {ref} failed: {e}") from e
        logger.info(f"Pushed {ref}")


def runtime_healthcheck(target: DeploymentTarget) -> Dict[str, Any]:
    """Container-level health check probing the same path from inside the container."""
    url = f"http://localhost:{target.container_port}{target.health_path}"
    return {
        "test": ["CMD-SHELL", f"curl -fsS {url} || wget -qO- {url} || exit 1"],
        "interval": int(target.health_interval * _NS),
        "timeout": int(min(target.health_interval, 5) * _NS),
        "retries": 3,
        "start_period": int(target.health_interval * _NS),
    }


def _image_of(container) -> Optional[str]:
    labels = getattr(container, "labels", None) or {}
    if labels.get(IMAGE_LABEL):
        return labels[IMAGE_LABEL]
    image = getattr(container, "image", None)
    tags = getattr(image, "tags", None) or []
    return tags[0] if tags else None
