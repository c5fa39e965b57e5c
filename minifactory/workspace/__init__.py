"""
MINIFACTORY Workspace

One checkout per project under the projects root. The checkout
lives only for the duration of a single deployment run and is
deleted at the end of it, whatever happened in between.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from loguru import logger


class WorkspaceError(Exception):
    pass


class Workspace:
    """
    The on-disk checkout of a single project.
    """

    def __init__(self, projects_dir: Path, project: str, app_subdir: str = "mini-app"):
        self.projects_dir = projects_dir
        self.project = project
        self.app_subdir = app_subdir

    @property
    def path(self) -> Path:
        return self.projects_dir / self.project

    @property
    def app_path(self) -> Path:
        """The editable app folder inside the checkout."""
        return self.path / self.app_subdir

    def prepare(self) -> Path:
        """
        Make room for a fresh clone.
        An aborted earlier run leaves its checkout behind, so stale state is removed.
        """
        if self.path.exists():
            logger.warning(f"[WORKSPACE] Found stale checkout for {self.project}. Removing...")
            self.remove()

        try:
            self.projects_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkspaceError(f"Could not create projects dir {self.projects_dir}: {e}") from e

        return self.path

    def remove(self) -> None:
        """Delete the whole checkout. A missing directory is not an error."""
        if not self.path.exists():
            return
        try:
            shutil.rmtree(self.path)
        except OSError as e:
            raise WorkspaceError(f"Could not remove {self.path}: {e}") from e
        logger.info(f"[WORKSPACE] Removed {self.path}")
