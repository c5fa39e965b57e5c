"""
MINIFACTORY Assignment Store

The data directory holds a single slot: at most one pending
assignment, which is overwritten in place by the result record
once the deployment finishes.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError


class DeploymentAborted(RuntimeError):
    """An unrecoverable step failed. No result is written."""
    pass


class Assignment(BaseModel):
    """A pending deployment task."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    project: str
    instructions: str
    version: str | None = None


class DeploymentResult(BaseModel):
    """Result record. ``git_hash`` is the raw rev-parse output, untrimmed."""
    git_hash: str


class AssignmentStore:
    def __init__(self, path: Path):
        self.path = path

    def read(self) -> Assignment | None:
        """Return the pending assignment, or None when there is nothing to do."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"[STORE] No assignment at {self.path}")
            return None
        except OSError as e:
            logger.warning(f"[STORE] Could not read assignment at {self.path}: {e}")
            return None
        except UnicodeDecodeError as e:
            logger.warning(f"[STORE] Assignment at {self.path} is not UTF-8: {e}")
            return None

        try:
            return Assignment.model_validate_json(raw)
        except ValidationError as e:
            # A previously written result record lands here too.
            logger.debug(f"[STORE] {self.path} holds no pending assignment: {e}")
            return None

    def serialize(self, result: DeploymentResult) -> str:
        try:
            return result.model_dump_json()
        except (ValueError, TypeError) as e:
            raise DeploymentAborted(f"Could not convert {result!r} to string: {e}") from e

    def write(self, content: str) -> None:
        """Overwrite the slot with ``content``. Raises OSError on failure."""
        self.path.write_text(content, encoding="utf-8")
