"""
MINIFACTORY Edit Executor

Runs aider once against a checked-out mini-app, non-interactively,
under a wall-clock budget. Whatever happens (spawn failure, non-zero
exit, timeout) the caller gets an outcome back, never an exception,
so the deployment can go on to commit whatever state resulted.

Usage:
    executor = EditExecutor(config)
    outcome = await executor.apply(EditRequest(project, instructions, checkout, app))
"""

from __future__ import annotations

import asyncio
import os
import subprocess
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Literal, Protocol

import yaml
from loguru import logger

from minifactory.config_loader import MinifactoryConfig

EditStatus = Literal["completed", "failed", "timed_out", "failed_to_start"]


@dataclass
class EditRequest:
    project: str
    instructions: str
    checkout_path: Path
    app_path: Path


@dataclass
class EditOutcome:
    status: EditStatus
    exit_code: int | None = None
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"


class KillableProcess(Protocol):
    """The part of ``asyncio.subprocess.Process`` the timeout race needs."""

    async def wait(self) -> int: ...

    def kill(self) -> None: ...


async def wait_or_kill(process: KillableProcess, timeout: float) -> int | None:
    """
    Wait for ``process`` to exit, or kill it once ``timeout`` seconds pass.

    Returns the exit code, or None if the timer won. A failure to kill
    is logged and swallowed.
    """
    try:
        return await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        pass

    try:
        process.kill()
        await process.wait()
    except ProcessLookupError:
        # Exited between the timeout and the kill.
        pass
    except OSError as e:
        logger.error(f"[EDIT] Could not kill child process: {e}")
    return None


def build_command(
    config: MinifactoryConfig,
    instructions: str,
    checkout_path: Path,
    app_path: Path,
) -> list[str]:
    """Assemble the aider argv for one non-interactive edit."""
    npm = config.tools.npm
    test_cmd = (
        f"{npm} i --cwd {app_path} --no-save && "
        f"{npm} run --cwd {app_path} build"
    )
    return [
        config.tools.aider,
        "--model", config.model.identifier,
        "--model-settings-file", str(config.model_settings_path),
        "--restore-chat-history",
        "--no-gitignore",
        "--test-cmd", test_cmd,
        "--auto-test",
        "--read", str(checkout_path / config.edit.read_file),
        "--file", str(app_path / config.edit.edit_file),
        "--disable-playwright",
        "--no-detect-urls",
        "--no-suggest-shell-commands",
        "--edit-format", config.edit.edit_format,
        "--message", instructions,
    ]


def build_env(config: MinifactoryConfig, base: dict[str, str] | None = None) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    env["OLLAMA_API_BASE"] = config.model.api_base
    env["HOME"] = str(config.data_dir)
    return env


def write_model_settings(config: MinifactoryConfig) -> Path:
    """Write the aider model settings file naming the configured model."""
    path = config.model_settings_path
    path.write_text(
        yaml.safe_dump([{"name": config.model.identifier}], default_flow_style=False),
        encoding="utf-8",
    )
    return path


class EditExecutor:
    """One-shot aider invocation with a hard time budget."""

    def __init__(self, config: MinifactoryConfig):
        self.config = config
        self.timeout = config.edit.timeout_seconds

    async def apply(self, request: EditRequest) -> EditOutcome:
        cmd = build_command(
            self.config, request.instructions, request.checkout_path, request.app_path
        )
        label = f"requested change {request.instructions!r} on {request.project}"

        try:
            with self._output_sink(request.project) as sink:
                try:
                    process = await asyncio.create_subprocess_exec(
                        *cmd,
                        cwd=request.app_path,
                        env=build_env(self.config),
                        stdin=subprocess.DEVNULL,
                        stdout=sink,
                        stderr=sink,
                    )
                except (OSError, ValueError) as e:
                    # ValueError: an argument holds a NUL byte.
                    logger.error(f"[EDIT] Could not spawn child for {label}: {e}")
                    return EditOutcome("failed_to_start", detail=str(e))

                logger.info(f"[EDIT] aider started for {request.project} (pid {process.pid})")
                exit_code = await wait_or_kill(process, self.timeout)
        except OSError as e:
            logger.error(f"[EDIT] Could not open aider log for {request.project}: {e}")
            return EditOutcome("failed_to_start", detail=str(e))

        if exit_code is None:
            logger.error(f"[EDIT] Hit the {self.timeout:.0f}s timeout for {label}")
            return EditOutcome("timed_out", detail=f"killed after {self.timeout:.0f}s")

        if exit_code != 0:
            logger.error(f"[EDIT] Could not perform {label}: aider exited with {exit_code}")
            return EditOutcome("failed", exit_code=exit_code)

        logger.info(f"[EDIT] aider finished for {request.project}")
        return EditOutcome("completed", exit_code=0)

    @contextmanager
    def _output_sink(self, project: str) -> Iterator[Any]:
        """aider's output is discarded unless edit.capture_output is set."""
        if not self.config.edit.capture_output:
            yield subprocess.DEVNULL
            return

        log_dir = self.config.log_dir
        log_dir.mkdir(parents=True, exist_ok=True)
        with open(log_dir / f"{project}.aider.log", "ab") as handle:
            yield handle
