"""Per-project mutual exclusion between deployment runs."""

from __future__ import annotations

import fcntl
import os
from pathlib import Path
from typing import IO

from loguru import logger

from minifactory.workspace import WorkspaceError


class ProjectLock:
    """
    Exclusive, non-blocking flock on ``<lock_dir>/<project>.lock``.

    Two runs for the same project would share a checkout directory and
    force-push over each other, so the second one must back off.
    """

    def __init__(self, lock_dir: Path, project: str):
        self.lock_dir = lock_dir
        self.project = project
        self.path = lock_dir / f"{project}.lock"
        self._handle: IO[str] | None = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> bool:
        """Take the lock. Returns False if another run holds it."""
        while True:
            try:
                self.lock_dir.mkdir(parents=True, exist_ok=True)
                handle = open(self.path, "a+", encoding="utf-8")
            except OSError as e:
                raise WorkspaceError(f"Could not open lock file {self.path}: {e}") from e

            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                handle.close()
                return False

            # The previous holder may have unlinked the file after we opened it.
            if self._still_linked(handle):
                break
            handle.close()

        handle.seek(0)
        handle.truncate()
        handle.write(f"pid={os.getpid()}\n")
        handle.flush()
        self._handle = handle
        logger.debug(f"[LOCK] Acquired {self.path}")
        return True

    def release(self) -> None:
        """Drop the lock and delete its file so the lock dir does not accumulate."""
        if self._handle is None:
            return
        try:
            # Unlink while still holding the lock; waiters re-check the inode.
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"[LOCK] Could not remove {self.path}: {e}")
        finally:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
            self._handle.close()
            self._handle = None
        logger.debug(f"[LOCK] Released {self.path}")

    def _still_linked(self, handle: IO[str]) -> bool:
        try:
            on_disk = os.stat(self.path)
        except FileNotFoundError:
            return False
        opened = os.fstat(handle.fileno())
        return (on_disk.st_dev, on_disk.st_ino) == (opened.st_dev, opened.st_ino)

    def __enter__(self) -> "ProjectLock":
        return self

    def __exit__(self, *exc) -> None:
        self.release()
