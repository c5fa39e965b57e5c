"""
Version control adapter.

Every operation is a single git invocation with no retry. Output is
not interpreted: a non-zero exit is a failure, and rev-parse hands
back raw stdout.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Protocol

from loguru import logger


class VcsError(Exception):
    """A version control operation failed."""

    def __init__(self, operation: str, cause: str | BaseException):
        self.operation = operation
        self.cause = cause
        super().__init__(f"git {operation} failed: {cause}")


class VersionControl(Protocol):
    def clone(self, remote: str, path: Path) -> None: ...

    def reset_hard(self, path: Path, revision: str) -> None: ...

    def add_all(self, path: Path) -> None: ...

    def commit(self, path: Path, message: str) -> None: ...

    def push(self, path: Path, force: bool = True) -> None: ...

    def rev_parse(self, path: Path, ref: str = "HEAD") -> str: ...


class GitAdapter:
    """Runs git through ``executable`` (``<prefix>git``)."""

    def __init__(self, executable: str = "git", timeout: float | None = None):
        self.executable = executable
        self.timeout = timeout

    def clone(self, remote: str, path: Path) -> None:
        self._run("clone", ["clone", remote, str(path)])

    def reset_hard(self, path: Path, revision: str) -> None:
        self._in_repo("reset", path, "reset", "--hard", revision)

    def add_all(self, path: Path) -> None:
        self._in_repo("add", path, "add", "-A")

    def commit(self, path: Path, message: str) -> None:
        self._in_repo("commit", path, "commit", "-m", message)

    def push(self, path: Path, force: bool = True) -> None:
        args = ["push", "-f"] if force else ["push"]
        self._in_repo("push", path, *args)

    def rev_parse(self, path: Path, ref: str = "HEAD") -> str:
        return self._in_repo("rev-parse", path, "rev-parse", ref)

    def _in_repo(self, operation: str, path: Path, *args: str) -> str:
        return self._run(operation, ["-C", str(path), *args])

    def _run(self, operation: str, args: list[str]) -> str:
        cmd = [self.executable, *args]
        logger.debug(f"[GIT] {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            raise VcsError(operation, f"timed out after {self.timeout}s") from e
        except (OSError, ValueError) as e:
            # ValueError covers undecodable output and NUL bytes in arguments.
            raise VcsError(operation, e) from e

        if result.returncode != 0:
            raise VcsError(
                operation,
                f"exit {result.returncode}: {result.stderr.strip()}",
            )
        return result.stdout
