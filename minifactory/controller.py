"""
MINIFACTORY Controller: the deployment pipeline

It is NOT smart. It is deterministic.

Pipeline: Clone → Reset → Edit → Add → Commit → Push → Rev-parse → Cleanup → Report

Failure policy:
  - Clone and rev-parse are fatal: the run aborts with DeploymentAborted,
    nothing is written and the assignment stays in place for a retry.
  - Everything else is logged and the pipeline moves on, so cleanup
    always happens and some hash is always reported.
"""

from __future__ import annotations

from typing import Callable

from loguru import logger

from minifactory.assignment import (
    Assignment,
    AssignmentStore,
    DeploymentAborted,
    DeploymentResult,
)
from minifactory.config_loader import MinifactoryConfig
from minifactory.editor import EditExecutor, EditRequest
from minifactory.event_bus import EventBus, bus as default_bus
from minifactory.state import DeploymentState, StepName
from minifactory.workspace import Workspace, WorkspaceError
from minifactory.workspace.git import GitAdapter, VcsError, VersionControl
from minifactory.workspace.lock import ProjectLock


class Deployer:
    """Executes the single pending assignment, if any."""

    def __init__(
        self,
        config: MinifactoryConfig,
        vcs: VersionControl | None = None,
        editor: EditExecutor | None = None,
        store: AssignmentStore | None = None,
        bus: EventBus | None = None,
    ):
        self.config = config
        self.vcs = vcs or GitAdapter(
            config.tools.git, timeout=config.deploy.git_timeout_seconds
        )
        self.editor = editor or EditExecutor(config)
        self.store = store or AssignmentStore(config.assignment_path)
        self.bus = bus or default_bus

        # Run state (reset per-run)
        self.state: DeploymentState | None = None

    async def run(self) -> DeploymentResult | None:
        """Process the pending assignment. Returns None when there was nothing to do."""
        assignment = self.store.read()
        if assignment is None:
            logger.info("[DEPLOY] No pending assignment.")
            return None

        lock = ProjectLock(self.config.lock_dir, assignment.project)
        try:
            acquired = lock.acquire()
        except WorkspaceError as e:
            raise DeploymentAborted(f"Could not lock {assignment.project}: {e}") from e

        if not acquired:
            logger.warning(
                f"[DEPLOY] Another deployment of {assignment.project} is running. "
                "Leaving the assignment for a later run."
            )
            self.bus.emit("deployment_skipped", assignment.project, {"reason": "locked"})
            return None

        with lock:
            return await self._deploy(assignment)

    async def _deploy(self, assignment: Assignment) -> DeploymentResult:
        project = assignment.project
        state = self.state = DeploymentState(project=project, version=assignment.version)
        self.bus.emit(
            "deployment_started",
            project,
            {"version": assignment.version, "instructions": assignment.instructions},
        )

        workspace = Workspace(self.config.projects_dir, project, self.config.edit.app_subdir)
        path = workspace.path

        # ── 1. Clone (fatal) ──
        remote = self.config.remote.url_for(project)
        try:
            workspace.prepare()
            self.vcs.clone(remote, path)
        except (WorkspaceError, VcsError) as e:
            self._step(state, "clone", "failed", str(e))
            raise DeploymentAborted(f"Could not clone remote repo to {path}: {e}") from e
        self._step(state, "clone", "ok", remote)

        # ── 2. Pin version ──
        if assignment.version is not None:
            try:
                self.vcs.reset_hard(path, assignment.version)
                self._step(state, "reset", "ok", assignment.version)
            except VcsError as e:
                logger.error(f"[DEPLOY] Could not reset {path} to {assignment.version}: {e}")
                self._step(state, "reset", "failed", str(e))
        else:
            self._step(state, "reset", "skipped")

        # ── 3. Edit ──
        outcome = await self.editor.apply(EditRequest(
            project=project,
            instructions=assignment.instructions,
            checkout_path=path,
            app_path=workspace.app_path,
        ))
        # Timeout and failure are treated alike: commit whatever is there.
        self._step(
            state,
            "edit",
            "ok" if outcome.succeeded else "failed",
            outcome.detail or outcome.status,
        )

        # ── 4-6. Record history ──
        self._recoverable(
            state, "add", lambda: self.vcs.add_all(path),
            f"Could not add aider chat history to {path}",
        )
        self._recoverable(
            state, "commit", lambda: self.vcs.commit(path, self.config.deploy.commit_message),
            f"Could not commit aider chat history to {path}",
        )
        self._recoverable(
            state, "push", lambda: self.vcs.push(path, force=True),
            f"Could not push {path} to remote repo",
        )

        # ── 7. Capture revision (fatal) ──
        try:
            git_hash = self.vcs.rev_parse(path, "HEAD")
        except VcsError as e:
            self._step(state, "rev_parse", "failed", str(e))
            raise DeploymentAborted(f"Could not get git hash of {path}: {e}") from e
        state.git_hash = git_hash
        self._step(state, "rev_parse", "ok", git_hash.strip())

        # ── 8. Cleanup ──
        try:
            workspace.remove()
            self._step(state, "cleanup", "ok")
        except WorkspaceError as e:
            logger.error(f"[DEPLOY] {e}")
            self._step(state, "cleanup", "failed", str(e))

        # ── 9. Report ──
        result = DeploymentResult(git_hash=git_hash)
        content = self.store.serialize(result)
        try:
            self.store.write(content)
            self._step(state, "report", "ok", str(self.store.path))
        except OSError as e:
            logger.error(f"[DEPLOY] Could not write {content} to {self.store.path}: {e}")
            self._step(state, "report", "failed", str(e))

        self.bus.emit(
            "deployment_finished",
            project,
            {"git_hash": git_hash, "failed_steps": state.failed_steps},
        )
        logger.info(f"[DEPLOY] {project} deployed at {git_hash.strip()}")
        return result

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _recoverable(
        self,
        state: DeploymentState,
        step: StepName,
        action: Callable[[], None],
        message: str,
    ) -> bool:
        try:
            action()
        except VcsError as e:
            logger.error(f"[DEPLOY] {message}: {e}")
            self._step(state, step, "failed", str(e))
            return False
        self._step(state, step, "ok")
        return True

    def _step(self, state: DeploymentState, step: StepName, status: str, detail: str = "") -> None:
        record = state.mark(step, status, detail)
        logger.debug(f"[DEPLOY] {step}: {status} {detail}".rstrip())
        self.bus.emit_step(state.project, record)
