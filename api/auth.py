"""API key and webhook signature checks."""
from __future__ import annotations

import hashlib
import hmac
import os
from typing import Optional


def verify_api_key(key: Optional[str]) -> bool:
    """Return True if provided key matches configured `API_KEY` env var."""
    if not key:
        return False
    expected = os.getenv("API_KEY")
    return expected is not None and hmac.compare_digest(key.encode(), expected.encode())


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Check an ``X-Hub-Signature-256`` header of the form ``sha256=HEX``.

    An unset secret rejects every request.
    """
    if not secret or not signature:
        return False
    if "=" not in signature:
        return False
    alg, sig = signature.split("=", 1)
    if alg != "sha256":
        return False

    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest.encode(), sig.encode())
