from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal

StageName = Literal["stage", "analyze", "index"]

STAGE_ORDER: tuple[StageName, ...] = ("stage", "analyze", "index")


class RunStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"

    @property
    def is_terminal(self) -> bool:
        return self not in (RunStatus.PENDING, RunStatus.RUNNING)


class SequenceState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"
    SKIPPED_ALL = "SKIPPED_ALL"


class OrchestratorError(Exception):
    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        external_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.external_id = external_id


class ValidationError(OrchestratorError):
    """Malformed manifest or configuration; raised before anything launches."""


class LaunchError(OrchestratorError):
    """External job creation failed or returned no usable run identifier."""


class PollError(OrchestratorError):
    """Run status could not be read or parsed."""


class StageFailure(OrchestratorError):
    def __init__(self, stage: str, external_id: str | None, status: RunStatus) -> None:
        super().__init__(
            f"Stage '{stage}' finished with status {status.value}",
            stage=stage,
            external_id=external_id,
        )
        self.status = status


@dataclass(frozen=True)
class PipelineRunHandle:
    stage_name: str
    external_id: str
    launch_parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StagePlan:
    name: StageName
    pipeline: str
    revision: str
    run_name: str
    params: dict[str, Any]
    output_path: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StageOutcome:
    name: str
    external_id: str | None
    status: RunStatus

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "external_id": self.external_id, "status": self.status.value}


@dataclass
class SequenceResult:
    state: SequenceState
    plan: list[StagePlan] = field(default_factory=list)
    stages: list[StageOutcome] = field(default_factory=list)
    failed_stage: str | None = None
    failed_external_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.state in (SequenceState.COMPLETED, SequenceState.SKIPPED_ALL)
