"""Sequencer for the stage → analyze → index meta-workflow."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError as SchemaError

from pipeline.io.files import probe_prefix, read_text
from pipeline.io.validate import validate_named
from pipeline.manifest.parser import ManifestReader
from pipeline.manifest.samplesheet import build_samplesheet_df

from .config import SequenceConfig
from .launcher import PipelineClient
from .monitor import await_run
from .templates import StagingArtifact, plan_artifacts, render_stage, staging_root
from .types import (
    LaunchError,
    OrchestratorError,
    RunStatus,
    SequenceResult,
    SequenceState,
    StageFailure,
    StageOutcome,
    StagePlan,
    ValidationError,
)

logger = logging.getLogger("processes.orchestrator")

SUMMARY_SCHEMA_VERSION = "0.1.0"


class SequenceInterrupted(OrchestratorError):
    """The controlling process was interrupted mid-stage; a Tower run may be in flight."""


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _utc_now_iso() -> str:
    now = _utc_now()
    ms = int(now.microsecond / 1000)
    return f"{now.strftime('%Y-%m-%dT%H:%M:%S')}.{ms:03d}Z"


def _log(event: str, **fields: Any) -> None:
    logger.info(json.dumps({"event": event, **fields}))


def load_artifacts(
    config: SequenceConfig, *, loader: Callable[[str | Path], str] = read_text
) -> list[StagingArtifact]:
    reader = ManifestReader(
        config.input_manifest,
        default_results_parent=config.results_parent,
        loader=loader,
    )
    return plan_artifacts(reader, config.output_base)


def plan_sequence(config: SequenceConfig, *, now: datetime) -> list[StagePlan]:
    """Render every non-skipped stage, threading each stage's output into the next.

    The first upstream location is the staging tree, so a sequence that skips
    ``stage`` (and ``analyze``) reads whatever was staged out-of-band.
    """
    upstream = staging_root(config.output_base)
    plans: list[StagePlan] = []
    for stage in config.stages:
        plan = render_stage(stage, config, upstream_output=upstream, now=now)
        try:
            validate_named("stage_params", plan.params)
        except SchemaError as e:
            raise ValidationError(f"Invalid parameters for stage '{stage}': {e}", stage=stage) from e
        plans.append(plan)
        upstream = plan.output_path
    return plans


def launch_command(plan: StagePlan, config: SequenceConfig) -> list[str]:
    """The ``tw launch`` command line a plan corresponds to (params file shown by name)."""
    cmd = [
        "tw",
        "launch",
        plan.pipeline,
        "--revision",
        plan.revision,
        "--workspace",
        str(config.workspace),
        "--name",
        plan.run_name,
    ]
    if config.compute_env:
        cmd += ["--compute-env", config.compute_env]
    cmd += ["--params-file", f"{plan.name}.params.yaml"]
    return cmd


def format_plan(
    config: SequenceConfig,
    plans: Sequence[StagePlan],
    artifacts: Sequence[StagingArtifact],
) -> str:
    """Render the plan as stable text; equal inputs give byte-identical output."""
    lines = [
        f"input: {config.input_manifest}",
        f"outdir: {config.output_base}",
        f"results_parent_id: {config.results_parent}",
        f"workspace: {config.workspace}",
        f"stages: {','.join(p.name for p in plans) or '(none)'}",
        "",
        f"samples ({len(artifacts)}):",
    ]
    sheet = build_samplesheet_df((a.sample_row for a in artifacts), cytassist=config.cytassist)
    lines.extend("  " + ln for ln in sheet.to_csv(index=False).splitlines())
    for i, plan in enumerate(plans, start=1):
        lines.append("")
        lines.append(f"[{i}/{len(plans)}] {plan.name}: {' '.join(launch_command(plan, config))}")
        params_yaml = yaml.safe_dump(plan.params, sort_keys=True, default_flow_style=False)
        lines.extend("    " + ln for ln in params_yaml.splitlines())
    return "\n".join(lines) + "\n"


def check_output_prefix(
    config: SequenceConfig, *, probe: Callable[[str], bool] | None = None
) -> None:
    if not (probe or probe_prefix)(config.output_base):
        raise ValidationError(f"Output prefix not reachable: {config.output_base}")


def _abort(
    result: SequenceResult, stage: str, external_id: str | None, status: RunStatus, error: str
) -> SequenceResult:
    result.stages.append(StageOutcome(stage, external_id, status))
    result.state = SequenceState.ABORTED
    result.failed_stage = stage
    result.failed_external_id = external_id
    result.error = error
    logger.error(
        json.dumps(
            {
                "event": "sequence_aborted",
                "stage": stage,
                "run_id": external_id,
                "status": status.value,
                "error": error,
            }
        )
    )
    return result


def _run_stage(
    client: PipelineClient,
    plan: StagePlan,
    config: SequenceConfig,
    *,
    sleep: Callable[[float], None],
) -> StageOutcome:
    """Launch one stage and wait for it; raises StageFailure unless it succeeds."""
    _log("stage_start", stage=plan.name, pipeline=plan.pipeline, revision=plan.revision)
    try:
        handle = client.launch(
            plan.pipeline,
            plan.revision,
            plan.params,
            stage_name=plan.name,
            run_name=plan.run_name,
            compute_env=config.compute_env,
        )
    except KeyboardInterrupt:
        raise SequenceInterrupted(
            f"Interrupted while launching stage '{plan.name}'; run '{plan.run_name}' may already exist in Tower",
            stage=plan.name,
        ) from None

    _log("stage_launched", stage=plan.name, run_id=handle.external_id)
    print(f"[orchestrator] Stage {plan.name}: launched run {handle.external_id}")
    try:
        status = await_run(client, handle, config.poll_interval, sleep=sleep)
    except KeyboardInterrupt:
        raise SequenceInterrupted(
            f"Interrupted while waiting for stage '{plan.name}'; the run keeps going in Tower",
            stage=plan.name,
            external_id=handle.external_id,
        ) from None

    if status is not RunStatus.SUCCEEDED:
        raise StageFailure(plan.name, handle.external_id, status)
    _log("stage_succeeded", stage=plan.name, run_id=handle.external_id)
    return StageOutcome(plan.name, handle.external_id, status)


def run_sequence(
    config: SequenceConfig,
    *,
    client: PipelineClient | None = None,
    plans: Sequence[StagePlan] | None = None,
    clock: Callable[[], datetime] = _utc_now,
    sleep: Callable[[float], None] = time.sleep,
    probe: Callable[[str], bool] | None = None,
) -> SequenceResult:
    """Execute the configured stages in order and stop at the first failure.

    ``plans`` defaults to :func:`plan_sequence` rendered at ``clock()``. In dry
    run mode neither ``client`` nor ``probe`` is called; each stage is echoed
    with a ``dry-run-<stage>`` identifier and reported as succeeded.
    """
    plans = list(plans) if plans is not None else plan_sequence(config, now=clock())
    result = SequenceResult(state=SequenceState.NOT_STARTED, plan=plans)

    if not plans:
        _log("sequence_skipped_all")
        result.state = SequenceState.SKIPPED_ALL
        return result

    if config.dry_run:
        for plan in plans:
            _log(
                "dry_run_launch",
                stage=plan.name,
                cmd=" ".join(launch_command(plan, config)),
                params=plan.params,
            )
            result.stages.append(StageOutcome(plan.name, f"dry-run-{plan.name}", RunStatus.SUCCEEDED))
        result.state = SequenceState.COMPLETED
        return result

    if client is None:
        raise ValueError("client is required unless dry_run is set")
    check_output_prefix(config, probe=probe)

    result.state = SequenceState.RUNNING
    for i, plan in enumerate(plans, start=1):
        print(f"[orchestrator] Stage {i}/{len(plans)}: {plan.name} ({plan.pipeline}@{plan.revision})")
        try:
            outcome = _run_stage(client, plan, config, sleep=sleep)
        except LaunchError as e:
            return _abort(result, plan.name, None, RunStatus.FAILED, str(e))
        except StageFailure as e:
            return _abort(result, plan.name, e.external_id, e.status, str(e))
        result.stages.append(outcome)
        print(f"[orchestrator] ✓ {plan.name} completed: {outcome.external_id}")

    result.state = SequenceState.COMPLETED
    _log("sequence_completed", stages=[s.name for s in result.stages])
    return result


def build_summary(config: SequenceConfig, result: SequenceResult) -> dict[str, Any]:
    return {
        "schema_version": SUMMARY_SCHEMA_VERSION,
        "created_ts": _utc_now_iso(),
        "state": result.state.value,
        "dry_run": config.dry_run,
        "failed_stage": result.failed_stage,
        "failed_external_id": result.failed_external_id,
        "config": config.to_dict(),
        "plan": [p.to_dict() for p in result.plan],
        "stages": [s.to_dict() for s in result.stages],
    }


def write_summary(config: SequenceConfig, result: SequenceResult, path: Path) -> Path:
    summary = build_summary(config, result)
    validate_named("run_summary", summary)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
    return path
