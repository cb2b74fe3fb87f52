"""Registry and API credentials from the local environment or AWS SSM.

boto3 is only needed for the ``aws`` mode and is installed with the ``aws``
extra.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Dict, Optional

from dotenv import load_dotenv
from loguru import logger

try:  # optional import for AWS mode
    import boto3  # type: ignore
except ImportError:  # pragma: no cover - optional
    boto3 = None  # type: ignore

MODES = ("local", "aws")


class SecretsManager:
    """Looks up secrets by name.

    ``local`` reads the process environment, seeded from ``env_file`` when it
    exists. ``aws`` reads SSM Parameter Store under ``prefix``. Non-empty
    values are cached for the life of the manager.
    """

    def __init__(self, mode: str = "local", env_file: str = ".env", prefix: str = ""):
        self.mode = (mode or "local").lower().strip()
        if self.mode not in MODES:
            raise ValueError(f"Unknown secrets mode: {self.mode}")
        self.prefix = prefix
        self._cache: Dict[str, str] = {}

        self._lookup: Callable[[str], Optional[str]]
        if self.mode == "aws":
            if boto3 is None:
                raise RuntimeError("boto3 is required for AWS secrets mode")
            self.ssm = boto3.client("ssm")
            self._lookup = self._from_ssm
        else:
            env_path = Path(env_file)
            if env_path.exists():
                load_dotenv(env_path)
            else:
                logger.debug(f"No {env_path} file, using process environment only")
            self._lookup = os.getenv

    def _from_ssm(self, key: str) -> Optional[str]:
        name = f"{self.prefix}{key}"
        try:
            response = self.ssm.get_parameter(Name=name, WithDecryption=True)
        except Exception as e:
            logger.warning(f"SSM lookup for {name} failed: {e}")
            return None
        return response.get("Parameter", {}).get("Value")

    def get_secret(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if key not in self._cache:
            value = self._lookup(key)
            if not value:
                return default
            self._cache[key] = value
        return self._cache[key]

    def registry_auth(self) -> Optional[Dict[str, str]]:
        """Docker SDK ``auth_config`` for the registry, or None for anonymous pulls."""
        username = self.get_secret("REGISTRY_USERNAME")
        password = self.get_secret("REGISTRY_PASSWORD")
        if not username or not password:
            return None
        return {"username": username, "password": password}
