"""
Test-wide configuration and shared fixtures.

Ensures the repository root (for ``backend.lambdas`` and ``scripts``) and the
Lambda root (for ``shared``, as laid out inside the deployment zip) are
importable without duplicated sys.path tweaks inside each test module.
"""
from __future__ import annotations

import pathlib
import sys

import pytest


REPO_ROOT = pathlib.Path(__file__).resolve().parents[2]
LAMBDA_ROOT = REPO_ROOT / "backend" / "lambdas"

for target in (REPO_ROOT, LAMBDA_ROOT):
    target_str = str(target)
    if target_str not in sys.path:
        sys.path.insert(0, target_str)


@pytest.fixture(autouse=True)
def _no_provider_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's real credentials out of the test run."""
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    monkeypatch.delenv("OPENROUTER_API_KEY_SECRET_NAME", raising=False)
