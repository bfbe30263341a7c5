"""Thin subprocess wrapper used by the git/docker/apt drivers."""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

logger = logging.getLogger("command_runner")


def format_cmd(cmd: list[str]) -> str:
    return " ".join(shlex.quote(part) for part in cmd)


def run_command(
    cmd: list[str],
    *,
    cwd: Path | None = None,
    check: bool = True,
    capture: bool = False,
    input_text: str | None = None,
) -> subprocess.CompletedProcess:
    """Run `cmd` without a shell.

    With `check=True` a non-zero exit raises `subprocess.CalledProcessError`
    carrying the tool's exit code; callers let it propagate. A missing
    executable is reported as exit code 127, like a shell would.
    """
    logger.debug(f"$ {format_cmd(cmd)}")
    try:
        return subprocess.run(
            cmd,
            cwd=str(cwd) if cwd is not None else None,
            check=check,
            capture_output=capture,
            text=True,
            input=input_text,
        )
    except FileNotFoundError:
        logger.error(f"Error: '{cmd[0]}' not found. Is it installed and on PATH?")
        raise subprocess.CalledProcessError(127, cmd) from None
