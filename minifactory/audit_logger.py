from __future__ import annotations

from pathlib import Path

from minifactory.event_bus import DeploymentEvent, EventBus, EventType


class AuditLogger:
    """
    Append-only JSONL trail of deployments, one line per event.

    ``only`` narrows the trail to some event types, e.g. just
    ``deployment_finished`` for a compact history of published hashes.
    """

    def __init__(
        self,
        file_path: Path,
        event_bus: EventBus,
        only: tuple[EventType, ...] | None = None,
    ):
        self.file_path = Path(file_path)
        self.only = only
        # Raises OSError when the log location is unusable; callers decide.
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        event_bus.subscribe(self.log_event)

    def log_event(self, event: DeploymentEvent) -> None:
        if self.only is not None and event.event_type not in self.only:
            return
        line = event.model_dump_json(exclude_none=True)
        with open(self.file_path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
