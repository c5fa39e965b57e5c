from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal

StepName = Literal[
    "clone", "reset", "edit", "add", "commit", "push", "rev_parse", "cleanup", "report",
]


class StepRecord(BaseModel):
    """Outcome of one pipeline step."""
    step: StepName
    status: Literal["pending", "ok", "failed", "skipped"] = "pending"
    detail: str = ""


class DeploymentState(BaseModel):
    """What happened during one deployment run."""
    project: str
    version: str | None = None
    steps: list[StepRecord] = Field(default_factory=list)
    git_hash: str | None = None

    def mark(self, step: StepName, status: str, detail: str = "") -> StepRecord:
        record = StepRecord(step=step, status=status, detail=detail)
        self.steps.append(record)
        return record

    def status_of(self, step: StepName) -> str | None:
        for record in reversed(self.steps):
            if record.step == step:
                return record.status
        return None

    @property
    def failed_steps(self) -> list[str]:
        return [r.step for r in self.steps if r.status == "failed"]

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)
