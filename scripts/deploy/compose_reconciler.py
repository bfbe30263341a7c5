"""Compose driver: pull images and reconcile the running service set."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from scripts.deploy.command_runner import run_command

logger = logging.getLogger("compose_reconciler")


@runtime_checkable
class ImageReconciler(Protocol):
    """Container-runtime capability used by the deployment trigger."""

    def pull(self, app_dir: Path, compose_file: str) -> None: ...
    def up(self, app_dir: Path, compose_file: str, *, remove_orphans: bool = True) -> None: ...
    def prune_images(self) -> None: ...


def build_compose_cmd(*, compose_file: str, args: list[str]) -> list[str]:
    return ["docker", "compose", "-f", compose_file, *args]


def build_compose_pull_cmd(*, compose_file: str) -> list[str]:
    return build_compose_cmd(compose_file=compose_file, args=["pull"])


def build_compose_up_cmd(*, compose_file: str, remove_orphans: bool = True) -> list[str]:
    args = ["up", "-d"]
    if remove_orphans:
        args.append("--remove-orphans")
    return build_compose_cmd(compose_file=compose_file, args=args)


def build_image_prune_cmd() -> list[str]:
    return ["docker", "image", "prune", "-f"]


class DockerComposeReconciler:
    """`ImageReconciler` backed by `docker compose`. Failures raise CalledProcessError."""

    def pull(self, app_dir: Path, compose_file: str) -> None:
        logger.info("📦 [compose] Pulling images")
        run_command(build_compose_pull_cmd(compose_file=compose_file), cwd=app_dir)

    def up(self, app_dir: Path, compose_file: str, *, remove_orphans: bool = True) -> None:
        logger.info("🚀 [compose] Starting services")
        run_command(build_compose_up_cmd(compose_file=compose_file, remove_orphans=remove_orphans), cwd=app_dir)

    def prune_images(self) -> None:
        logger.info("🧹 [compose] Pruning dangling images")
        run_command(build_image_prune_cmd())
