# core/image.py
"""Image references of the form ``<registry>/<namespace>/<name>:<tag>``.

Pipeline builds are tagged ``<branch>-<short-commit-hash>``; ``latest`` is the
moving alias. Manual deploys and rollbacks may use any valid docker tag.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from core.errors import ConfigError

DEFAULT_TAG = "latest"
SHORT_SHA_LENGTH = 7
MAX_TAG_LENGTH = 128

_REGISTRY_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9.-]*[A-Za-z0-9])?(?::\d+)?$")
_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_SHA_RE = re.compile(r"^[0-9a-fA-F]{7,40}$")


class InvalidImageReference(ConfigError):
    pass


@dataclass(frozen=True)
class ImageReference:
    registry: str
    namespace: str
    name: str
    tag: str = DEFAULT_TAG

    @classmethod
    def parse(cls, text: str) -> "ImageReference":
        """Parse ``registry/namespace/name:tag``.

        The first component is always the registry when more than one is
        given; components between registry and name form the namespace. A
        bare ``name[:tag]`` has no registry. A missing tag means ``latest``.
        """
        if not isinstance(text, str) or not text.strip():
            raise InvalidImageReference("Image reference is empty", key="image")
        text = text.strip()
        if any(ch.isspace() for ch in text) or "@" in text:
            raise InvalidImageReference(f"Invalid image reference: {text!r}", key="image")

        repository, tag = text, DEFAULT_TAG
        colon = text.rfind(":")
        if colon > text.rfind("/"):
            repository, tag = text[:colon], text[colon + 1:]

        parts = repository.split("/")
        if "" in parts:
            raise InvalidImageReference(f"Invalid image reference: {text!r}", key="image")
        if len(parts) == 1:
            registry, namespace, name = "", "", parts[0]
        else:
            registry, namespace, name = parts[0], "/".join(parts[1:-1]), parts[-1]

        ref = cls(registry=registry, namespace=namespace, name=name, tag=tag)
        ref.validate()
        return ref

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ImageReference":
        """Build the reference from ``REGISTRY_URL``, ``IMAGE_NAME`` and ``IMAGE_TAG``."""
        env = os.environ if env is None else env
        registry = _strip_scheme(env.get("REGISTRY_URL", ""))
        name = (env.get("IMAGE_NAME") or "").strip().strip("/")
        tag = (env.get("IMAGE_TAG") or "").strip() or DEFAULT_TAG

        if not registry:
            raise ConfigError("REGISTRY_URL is not set", key="REGISTRY_URL")
        if not name:
            raise ConfigError("IMAGE_NAME is not set", key="IMAGE_NAME")
        return cls.parse(f"{registry}/{name}:{tag}")

    def validate(self) -> None:
        if self.registry and not _REGISTRY_RE.match(self.registry):
            raise InvalidImageReference(f"Invalid registry: {self.registry!r}", key="image")
        components = [c for c in self.namespace.split("/") if c] + [self.name]
        for component in components:
            if not _COMPONENT_RE.match(component):
                raise InvalidImageReference(
                    f"Invalid repository component: {component!r}", key="image"
                )
        if not _TAG_RE.match(self.tag):
            raise InvalidImageReference(f"Invalid tag: {self.tag!r}", key="image")

    @property
    def repository(self) -> str:
        return "/".join(p for p in (self.registry, self.namespace, self.name) if p)

    @property
    def is_latest(self) -> bool:
        return self.tag == DEFAULT_TAG

    def with_tag(self, tag: str) -> "ImageReference":
        ref = ImageReference(self.registry, self.namespace, self.name, tag)
        ref.validate()
        return ref

    def __str__(self) -> str:
        return f"{self.repository}:{self.tag}"


def build_tag(branch: str, commit: str) -> str:
    """Return ``<branch>-<short-commit-hash>`` for a pipeline build."""
    if not commit or not _SHA_RE.match(commit.strip()):
        raise InvalidImageReference(f"Invalid commit hash: {commit!r}", key="commit")
    short = commit.strip().lower()[:SHORT_SHA_LENGTH]

    slug = re.sub(r"[^a-z0-9_.-]+", "-", (branch or "").lower()).strip("-.")
    if not slug:
        raise InvalidImageReference(f"Invalid branch name: {branch!r}", key="branch")
    slug = slug[: MAX_TAG_LENGTH - SHORT_SHA_LENGTH - 1].rstrip("-.")
    return f"{slug}-{short}"


def _strip_scheme(url: str) -> str:
    url = (url or "").strip()
    for prefix in ("https://", "http://"):
        if url.startswith(prefix):
            url = url[len(prefix):]
    return url.rstrip("/")
