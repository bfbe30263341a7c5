"""Per-application advisory lock so two deployments of one app never overlap."""

from __future__ import annotations

import fcntl
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger("app_lock")

LOCKS_DIRNAME = ".locks"
POLL_INTERVAL = 0.5


class LockTimeout(RuntimeError):
    def __init__(self, *, app_name: str, timeout: int):
        super().__init__(f"Another deployment of '{app_name}' is still running (waited {timeout}s)")
        self.app_name = app_name
        self.timeout = timeout


def lock_path_for(apps_dir: Path, app_name: str) -> Path:
    return apps_dir / LOCKS_DIRNAME / f"{app_name}.lock"


@contextmanager
def app_lock(apps_dir: Path, app_name: str, *, timeout: int = 600) -> Iterator[Path]:
    """Hold an exclusive flock on `<apps_dir>/.locks/<app_name>.lock`.

    Waits up to `timeout` seconds for a concurrent holder; `timeout=0` fails
    immediately. The kernel drops the lock if the process dies.
    """
    path = lock_path_for(apps_dir, app_name)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_RDWR | os.O_CREAT, 0o644)
    try:
        deadline = time.monotonic() + timeout
        announced = False
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise LockTimeout(app_name=app_name, timeout=timeout) from None
                if not announced:
                    logger.info(f"⏳ [deploy] Waiting for running deployment of {app_name} to finish")
                    announced = True
                time.sleep(POLL_INTERVAL)

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        try:
            yield path
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)
