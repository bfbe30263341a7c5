"""Repository sync: clone or destructively fast-forward an application checkout."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from scripts.deploy.command_runner import run_command

logger = logging.getLogger("source_sync")


@runtime_checkable
class SourceSync(Protocol):
    """Version-control capability used by the deployment trigger."""

    def has_checkout(self, app_dir: Path) -> bool: ...
    def clone(self, url: str, app_dir: Path) -> None: ...
    def reset_to_upstream(self, app_dir: Path, remote: str, branch: str) -> None: ...
    def is_tracked(self, app_dir: Path, path: str) -> bool: ...


def build_git_clone_cmd(*, url: str, app_dir: Path) -> list[str]:
    return ["git", "clone", url, str(app_dir)]


def build_git_fetch_cmd(*, remote: str) -> list[str]:
    return ["git", "fetch", remote]


def build_git_reset_cmd(*, remote: str, branch: str) -> list[str]:
    return ["git", "reset", "--hard", f"{remote}/{branch}"]


def build_git_ls_files_cmd(*, path: str) -> list[str]:
    return ["git", "ls-files", "--error-unmatch", "--", path]


class GitSourceSync:
    """`SourceSync` backed by the git CLI. Failures raise CalledProcessError."""

    def has_checkout(self, app_dir: Path) -> bool:
        return (app_dir / ".git").is_dir()

    def clone(self, url: str, app_dir: Path) -> None:
        logger.info("📥 [git] Cloning repository")
        run_command(build_git_clone_cmd(url=url, app_dir=app_dir))

    def reset_to_upstream(self, app_dir: Path, remote: str, branch: str) -> None:
        logger.info("🔄 [git] Updating existing repository")
        run_command(build_git_fetch_cmd(remote=remote), cwd=app_dir)
        run_command(build_git_reset_cmd(remote=remote, branch=branch), cwd=app_dir)

    def is_tracked(self, app_dir: Path, path: str) -> bool:
        result = run_command(build_git_ls_files_cmd(path=path), cwd=app_dir, check=False, capture=True)
        return result.returncode == 0
