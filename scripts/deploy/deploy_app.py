#!/usr/bin/env python3
"""Redeploy one Docker Compose application from its GitHub repository.

Invoked by the webhook dispatcher as:

    carrier-deploy <repository-name> <git-ref>

Only the production ref (default `refs/heads/main`) deploys; any other ref is
a successful no-op. The application lives in `<apps_dir>/<repository-name>`:
it is cloned on first deploy, otherwise fetched and hard-reset to the
upstream branch. The compose descriptor is required; `.env.production` (or,
with a warning, `.env.example`) is copied to `.env`; then
`docker compose pull`, `docker compose up -d --remove-orphans` and
`docker image prune -f` run in that order.

Exit codes: 0 on success or skip, 1 on a fatal policy error (e.g. missing
descriptor), otherwise the exit code of the failing git/docker command
(128 + signal number when it was killed by a signal).
"""

from __future__ import annotations

import argparse
import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from dotenv import dotenv_values

from scripts.deploy.app_lock import LockTimeout, app_lock
from scripts.deploy.command_runner import format_cmd
from scripts.deploy.compose_helpers import (
    ComposeDescriptorError,
    compose_descriptor_path,
    get_images,
    get_service_names,
    load_compose_descriptor,
)
from scripts.deploy.compose_reconciler import DockerComposeReconciler, ImageReconciler
from scripts.deploy.deploy_config import (
    ENV_RUNTIME,
    DeployConfig,
    build_clone_url,
    load_deploy_config,
    resolve_platform_dir,
)
from scripts.deploy.env_schema import EnvValidationError
from scripts.deploy.log_helpers import register_secret, setup_logging
from scripts.deploy.source_sync import GitSourceSync, SourceSync

logger = logging.getLogger("deploy_app")

# One path component. No leading dot, so `.locks` can never be an app; repos such
# as `.github` are therefore not deployable.
APP_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9._-]*$")


class DeployOutcome(str, Enum):
    SKIPPED = "skipped"
    DEPLOYED = "deployed"


@dataclass(frozen=True)
class DeployRequest:
    repo_name: str
    ref: str


@dataclass(frozen=True)
class DeployResult:
    app_name: str
    ref: str
    outcome: DeployOutcome
    app_dir: Path | None = None
    cloned: bool = False
    env_source: str | None = None


class DeployError(RuntimeError):
    """Fatal, non-retried deployment failure with the exit code to report."""

    def __init__(self, message: str, *, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def validate_app_name(name: str) -> str:
    candidate = name.strip()
    if not APP_NAME_PATTERN.match(candidate) or candidate in {".", ".."}:
        raise DeployError(f"Invalid repository name: {name!r}")
    return candidate


def select_env_file(app_dir: Path, candidates: tuple[str, ...]) -> str | None:
    """Copy the first present candidate to `.env`; return its name (None if none exist)."""
    for index, candidate in enumerate(candidates):
        source = app_dir / candidate
        if not source.is_file():
            continue
        if index > 0:
            logger.warning(f"⚠️  [deploy] WARNING: Using {candidate} - configure production values!")
        else:
            logger.info(f"🔐 [deploy] Using {candidate}")
        shutil.copyfile(source, app_dir / ENV_RUNTIME)
        return candidate
    logger.info("[deploy] No environment file found, deploying without .env")
    return None


def _sync_checkout(*, app_name: str, config: DeployConfig, app_dir: Path, source_sync: SourceSync) -> bool:
    if source_sync.has_checkout(app_dir):
        source_sync.reset_to_upstream(app_dir, config.remote, config.production_branch)
        return False

    if not config.github_org and "{org}" in config.clone_url_template:
        raise DeployError("GITHUB_ORG is not configured; cannot build the clone URL")
    url = build_clone_url(
        template=config.clone_url_template,
        org=config.github_org,
        repo=app_name,
        token=config.github_token,
    )
    source_sync.clone(url, app_dir)
    return True


def run_deployment(
    request: DeployRequest,
    config: DeployConfig,
    *,
    source_sync: SourceSync,
    reconciler: ImageReconciler,
) -> DeployResult:
    logger.info(f"🚀 [deploy] Deployment triggered for {request.repo_name} ({request.ref})")

    if request.ref != config.production_ref:
        logger.info(f"[deploy] Skipping deployment - not {config.production_branch} branch")
        return DeployResult(app_name=request.repo_name, ref=request.ref, outcome=DeployOutcome.SKIPPED)

    app_name = validate_app_name(request.repo_name)
    app_dir = config.apps_dir / app_name

    try:
        with app_lock(config.apps_dir, app_name, timeout=config.lock_timeout):
            app_dir.mkdir(parents=True, exist_ok=True)
            cloned = _sync_checkout(app_name=app_name, config=config, app_dir=app_dir, source_sync=source_sync)

            if not compose_descriptor_path(app_dir, config.compose_file).is_file():
                raise DeployError(f"No {config.compose_file} found")

            env_source = select_env_file(app_dir, config.env_candidates)
            if env_source and source_sync.is_tracked(app_dir, ENV_RUNTIME):
                logger.warning(f"⚠️  [deploy] WARNING: {ENV_RUNTIME} is tracked in version control for {app_name}")

            env_path = app_dir / ENV_RUNTIME
            env_values = {k: v for k, v in dotenv_values(env_path).items() if v is not None} if env_path.is_file() else {}
            try:
                descriptor = load_compose_descriptor(app_dir, config.compose_file, env=env_values)
            except ComposeDescriptorError as e:
                # docker compose is the authority on the descriptor; let it report real errors.
                logger.warning(f"⚠️  [deploy] WARNING: {e}")
            else:
                logger.info(f"[deploy] Services: {', '.join(get_service_names(descriptor)) or '-'}")
                for image in get_images(descriptor):
                    logger.debug(f"[deploy] Image: {image}")

            logger.info("[deploy] Deploying application")
            reconciler.pull(app_dir, config.compose_file)
            reconciler.up(app_dir, config.compose_file, remove_orphans=True)
            reconciler.prune_images()
    except LockTimeout as e:
        raise DeployError(str(e)) from e

    logger.info("✅ [deploy] Deployment completed successfully")
    return DeployResult(
        app_name=app_name,
        ref=request.ref,
        outcome=DeployOutcome.DEPLOYED,
        app_dir=app_dir,
        cloned=cloned,
        env_source=env_source,
    )


def process_exit_code(returncode: int) -> int:
    """Map a child's return code to our exit code; signal deaths become 128 + signum like a shell."""
    if returncode < 0:
        return 128 - returncode
    return returncode


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Deploy a docker compose application from GitHub")
    parser.add_argument("repo_name", help="Repository name (also the application directory name)")
    parser.add_argument("ref", help="Git ref from the push payload, e.g. refs/heads/main")
    parser.add_argument(
        "--platform-dir",
        default=None,
        help="Platform root holding .env. Resolution: CLI -> CARRIER_PLATFORM_DIR env var -> /opt/carrier",
    )
    parser.add_argument(
        "--apps-dir",
        default=None,
        help="Applications root. Resolution: CLI -> CARRIER_APPS_DIR env var -> platform .env -> <platform-dir>/apps",
    )
    parser.add_argument("--production-ref", default=None, help="Only this ref deploys (default: refs/heads/main)")
    parser.add_argument("--compose-file", default=None, help="Compose descriptor name (default: docker-compose.yml)")
    parser.add_argument("--remote", default=None, help="Git remote to fetch from (default: origin)")
    parser.add_argument(
        "--lock-timeout",
        type=int,
        default=None,
        help="Seconds to wait for a running deployment of the same app (default: 600, 0 = do not wait)",
    )
    parser.add_argument("--verbose", action="store_true", help="Log every command before running it")
    return parser


def main(
    argv: list[str] | None = None,
    *,
    source_sync: SourceSync | None = None,
    reconciler: ImageReconciler | None = None,
) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=bool(args.verbose))

    try:
        config = load_deploy_config(
            platform_dir=resolve_platform_dir(args.platform_dir),
            apps_dir=args.apps_dir,
            production_ref=args.production_ref,
            remote=args.remote,
            compose_file=args.compose_file,
            lock_timeout=args.lock_timeout,
        )
    except EnvValidationError as e:
        logger.error(e.format())
        return 2
    register_secret(config.github_token)

    try:
        run_deployment(
            DeployRequest(repo_name=args.repo_name, ref=args.ref),
            config,
            source_sync=source_sync or GitSourceSync(),
            reconciler=reconciler or DockerComposeReconciler(),
        )
    except DeployError as e:
        logger.error(f"❌ [deploy] ERROR: {e}")
        return e.exit_code
    except subprocess.CalledProcessError as e:
        cmd = e.cmd if isinstance(e.cmd, str) else format_cmd(list(e.cmd))
        logger.error(f"❌ [deploy] Command failed with exit code {e.returncode}: {cmd}")
        return process_exit_code(e.returncode)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
