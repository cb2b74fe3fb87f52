# core/security.py
"""Credential checks run before the deploy service starts."""
import os
import re
from typing import List, Tuple

from loguru import logger

# Known test/weak credentials that should never be used in production
FORBIDDEN_CREDENTIALS = {
    "test-key",
    "test-api-key",
    "test-webhook-secret",
    "dev-api-key",
    "your-secret-api-key-here",
    "your-webhook-secret",
    "changeme",
    "secret",
    "password",
    "admin",
    "123456",
}

_LETTERS_ONLY = re.compile(r"^[A-Za-z]+$")
MIN_UNIQUE_CHARS = 10


def validate_credential_strength(
    credential: str, min_length: int = 32
) -> Tuple[bool, List[str]]:
    """Check an API key or webhook secret.

    Returns ``(is_valid, issues)``; every failed rule adds one issue.
    """
    if not credential:
        return False, ["Credential is empty"]

    rules = [
        (len(credential) < min_length, f"Credential too short (minimum {min_length} characters)"),
        (credential.lower() in FORBIDDEN_CREDENTIALS, "Using forbidden test/weak credential"),
        (
            bool(_LETTERS_ONLY.match(credential)),
            "Credential contains only letters (should include numbers/symbols)",
        ),
        (
            len(set(credential)) < MIN_UNIQUE_CHARS,
            "Credential has low entropy (too few unique characters)",
        ),
    ]
    issues = [message for failed, message in rules if failed]
    return not issues, issues


def validate_production_secrets() -> Tuple[bool, List[str]]:
    """
    Validate the deploy service's secrets and docker host settings.

    Returns:
        Tuple of (all_valid, list_of_all_issues)
    """
    all_issues = []

    if os.getenv("TESTING") == "1" or os.getenv("PYTEST_CURRENT_TEST"):
        return True, []

    for key in ("API_KEY", "WEBHOOK_SECRET"):
        value = os.getenv(key)
        if not value:
            all_issues.append(f"{key} is not set")
            continue
        is_valid, issues = validate_credential_strength(value, min_length=32)
        if not is_valid:
            all_issues.extend([f"{key}: {issue}" for issue in issues])

    deploy_host = os.getenv("DEPLOY_HOST", "")
    if deploy_host.startswith("tcp://") or deploy_host.startswith("http://"):
        all_issues.append(
            "DEPLOY_HOST: unauthenticated docker socket, use ssh://user@host instead"
        )

    return len(all_issues) == 0, all_issues


def check_secrets_on_startup(strict: bool = False) -> None:
    """
    Log weak or missing credentials.

    Raises:
        ValueError: If strict=True and validation fails
    """
    is_valid, issues = validate_production_secrets()
    if is_valid:
        return

    logger.error("=" * 80)
    logger.error("SECURITY VALIDATION FAILED - WEAK OR MISSING CREDENTIALS")
    logger.error("=" * 80)
    for issue in issues:
        logger.error(f"  - {issue}")
    logger.error("Generate strong secrets with:")
    logger.error("     python -c \"import secrets; print(secrets.token_urlsafe(32))\"")
    logger.error("=" * 80)

    if strict:
        raise ValueError(
            f"Security validation failed: {len(issues)} issue(s) found. "
            "Fix secrets before starting the deploy service."
        )
