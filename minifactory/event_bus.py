"""
Deployment events.

The controller announces the start and end of a run and the outcome
of every pipeline step. Subscribers (the JSONL audit log, tests) only
observe: a subscriber that raises is logged and the run goes on.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Literal

from loguru import logger
from pydantic import BaseModel, Field

from minifactory.state import StepName, StepRecord

EventType = Literal[
    "deployment_started",
    "deployment_skipped",
    "deployment_finished",
    "step_ok",
    "step_failed",
    "step_skipped",
]

Subscriber = Callable[["DeploymentEvent"], None]


class DeploymentEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_type: EventType
    project: str
    step: StepName | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class EventBus:
    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def emit(
        self,
        event_type: EventType,
        project: str,
        payload: dict[str, Any] | None = None,
        step: StepName | None = None,
    ) -> DeploymentEvent:
        event = DeploymentEvent(
            event_type=event_type, project=project, step=step, payload=payload or {}
        )
        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.opt(exception=True).warning(
                    f"[EVENTS] Subscriber failed on {event_type} for {project}"
                )
        return event

    def emit_step(self, project: str, record: StepRecord) -> DeploymentEvent:
        """Announce a finished step as ``step_<status>``."""
        return self.emit(
            f"step_{record.status}",
            project,
            {"detail": record.detail} if record.detail else {},
            step=record.step,
        )


# Process-wide bus the CLI wires the audit log onto
bus = EventBus()
