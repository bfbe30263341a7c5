from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    # Allow tests to import `scripts.*` as a package.
    repo_root = Path(__file__).parents[2]
    sys.path.append(str(repo_root))


@pytest.fixture(autouse=True)
def _isolated_platform_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Schema keys from the developer's shell must not leak into resolution tests.
    from scripts.deploy.env_schema import SecretsEnum, VarsEnum

    for key in [*VarsEnum, *SecretsEnum]:
        monkeypatch.delenv(key.value, raising=False)


@pytest.fixture
def repo_root() -> Path:
    return Path(__file__).parents[2]
