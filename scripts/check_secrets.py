#!/usr/bin/env python3
# scripts/check_secrets.py
"""Pre-commit hook: reject placeholder or weak credentials in .env files."""
import sys
from pathlib import Path

from dotenv import dotenv_values

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.security import FORBIDDEN_CREDENTIALS, validate_credential_strength  # noqa: E402

SECRET_KEYS = ("API_KEY", "WEBHOOK_SECRET", "REGISTRY_PASSWORD")
# Only credential values are checked; hosts and URLs are free-form
CREDENTIAL_KEYS = SECRET_KEYS + ("REGISTRY_USERNAME",)
PLACEHOLDER_MARKERS = ("CHANGE_ME", "your-", "example")


def check_file(filepath: Path) -> tuple[bool, list[str]]:
    issues = []
    values = dotenv_values(filepath)

    for key, value in values.items():
        if not value or key not in CREDENTIAL_KEYS:
            continue
        if value.lower() in FORBIDDEN_CREDENTIALS or any(
            marker.lower() in value.lower() for marker in PLACEHOLDER_MARKERS
        ):
            issues.append(f"{key}: placeholder or test value")
            continue
        if key in SECRET_KEYS:
            ok, problems = validate_credential_strength(value)
            if not ok:
                issues.extend(f"{key}: {p}" for p in problems)

    return len(issues) == 0, issues


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print("Usage: check_secrets.py <file> [<file> ...]")
        return 0

    all_passed = True
    for filepath in argv:
        path = Path(filepath)
        # Only real .env files; templates are meant to hold placeholders
        if not path.name.startswith(".env") or "example" in path.name:
            continue

        passed, issues = check_file(path)
        if not passed:
            all_passed = False
            print(f"\nSECURITY: weak credentials in {filepath}")
            for issue in issues:
                print(f"   {issue}")

    if not all_passed:
        print('\nGenerate strong secrets with: python -c "import secrets; print(secrets.token_urlsafe(32))"')
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
