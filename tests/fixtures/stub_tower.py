from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from processes.orchestrator.types import LaunchError, PipelineRunHandle, PollError


class StubTowerClient:
    """In-memory stand-in for TowerClient.

    ``statuses`` maps stage name to the status strings returned by successive
    polls; the last entry repeats. A ``PollError`` instance in the list is
    raised instead of returned.
    """

    def __init__(
        self,
        statuses: Mapping[str, list[Any]] | None = None,
        launch_errors: set[str] | None = None,
    ) -> None:
        self.statuses = {k: list(v) for k, v in (statuses or {}).items()}
        self.launch_errors = launch_errors or set()
        self.launched: list[dict[str, Any]] = []
        self.polled: list[str] = []

    def launch(
        self,
        pipeline_ref: str,
        revision: str,
        rendered_params: Mapping[str, Any],
        *,
        stage_name: str,
        run_name: str,
        compute_env: str | None = None,
    ) -> PipelineRunHandle:
        if stage_name in self.launch_errors:
            raise LaunchError("tw launch exited 1: boom", stage=stage_name)
        run_id = f"wf{len(self.launched) + 1}{stage_name}"
        self.launched.append(
            {
                "stage": stage_name,
                "pipeline": pipeline_ref,
                "revision": revision,
                "params": dict(rendered_params),
                "run_name": run_name,
                "compute_env": compute_env,
                "run_id": run_id,
            }
        )
        return PipelineRunHandle(stage_name, run_id, dict(rendered_params))

    def status(self, handle: PipelineRunHandle) -> str:
        self.polled.append(handle.external_id)
        seq = self.statuses.get(handle.stage_name) or ["SUCCEEDED"]
        value = seq.pop(0) if len(seq) > 1 else seq[0]
        if isinstance(value, PollError):
            raise value
        return str(value)

    @property
    def launched_stages(self) -> list[str]:
        return [rec["stage"] for rec in self.launched]
