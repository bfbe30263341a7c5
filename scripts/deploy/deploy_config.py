"""Resolve deployment settings from CLI flags, process env and the platform `.env`.

Resolution order for every setting: CLI -> process env -> `<platform_dir>/.env` -> schema default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from scripts.deploy.env_schema import (
    PLATFORM_SCHEMA,
    SecretsEnum,
    VarsEnum,
    get_spec,
    parse_dotenv_file,
    parse_lock_timeout,
)

ENV_PRODUCTION = ".env.production"
ENV_EXAMPLE = ".env.example"
ENV_RUNTIME = ".env"

BRANCH_REF_PREFIX = "refs/heads/"


@dataclass(frozen=True)
class DeployConfig:
    apps_dir: Path
    github_org: str = ""
    production_ref: str = "refs/heads/main"
    remote: str = "origin"
    compose_file: str = "docker-compose.yml"
    clone_url_template: str = "https://github.com/{org}/{repo}.git"
    github_token: str = ""
    lock_timeout: int = 600
    # Candidate env files in priority order; the first present one is copied to `.env`.
    env_candidates: tuple[str, ...] = (ENV_PRODUCTION, ENV_EXAMPLE)

    @property
    def production_branch(self) -> str:
        return branch_from_ref(self.production_ref)


def branch_from_ref(ref: str) -> str:
    ref = ref.strip()
    if ref.startswith(BRANCH_REF_PREFIX):
        return ref[len(BRANCH_REF_PREFIX):]
    return ref


def build_clone_url(*, template: str, org: str, repo: str, token: str = "") -> str:
    url = template.format(org=org, repo=repo)
    # Token auth only applies to plain https GitHub-style URLs.
    if token and url.startswith("https://") and "@" not in url.split("/", 3)[2]:
        url = f"https://x-access-token:{token}@{url[len('https://'):]}"
    return url


def read_platform_env(platform_dir: Path) -> dict[str, str]:
    dotenv_path = platform_dir / ".env"
    if not dotenv_path.exists():
        return {}
    return parse_dotenv_file(dotenv_path)


def _resolve(
    key: VarsEnum | SecretsEnum,
    *,
    cli_value: object | None,
    environ: Mapping[str, str],
    file_kv: Mapping[str, str],
) -> str:
    resolved = str(cli_value if cli_value is not None else "").strip()
    if not resolved:
        resolved = str(environ.get(key.value) or "").strip()
    if not resolved:
        resolved = str(file_kv.get(key.value) or "").strip()
    if not resolved:
        resolved = get_spec(PLATFORM_SCHEMA, key).default or ""
    return resolved


def resolve_platform_dir(cli_value: str | None = None, environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    return Path(_resolve(VarsEnum.CARRIER_PLATFORM_DIR, cli_value=cli_value, environ=env, file_kv={}))


def load_deploy_config(
    *,
    platform_dir: Path | None = None,
    apps_dir: str | None = None,
    production_ref: str | None = None,
    remote: str | None = None,
    compose_file: str | None = None,
    lock_timeout: int | None = None,
    environ: Mapping[str, str] | None = None,
) -> DeployConfig:
    env = os.environ if environ is None else environ
    root = platform_dir or resolve_platform_dir(environ=env)
    file_kv = read_platform_env(root)

    def resolve(key: VarsEnum | SecretsEnum, cli_value: object | None = None) -> str:
        return _resolve(key, cli_value=cli_value, environ=env, file_kv=file_kv)

    resolved_apps_dir = resolve(VarsEnum.CARRIER_APPS_DIR, apps_dir) or str(root / "apps")

    return DeployConfig(
        apps_dir=Path(resolved_apps_dir),
        github_org=resolve(VarsEnum.GITHUB_ORG),
        production_ref=resolve(VarsEnum.CARRIER_DEPLOY_REF, production_ref),
        remote=resolve(VarsEnum.CARRIER_REMOTE, remote),
        compose_file=resolve(VarsEnum.CARRIER_COMPOSE_FILE, compose_file),
        clone_url_template=resolve(VarsEnum.CARRIER_CLONE_URL_TEMPLATE),
        github_token=resolve(SecretsEnum.GITHUB_TOKEN),
        lock_timeout=parse_lock_timeout(
            resolve(VarsEnum.CARRIER_LOCK_TIMEOUT, lock_timeout),
            context=f"deploy config ({root / '.env'} + env)",
        ),
    )
