from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None


class PlanRequest(BaseModel):
    input: str
    outdir: str
    results_parent_id: str
    workspace: str
    manifest_csv: str | None = None  # inline manifest text; read from `input` when absent
    spatialvi_pipeline: str | None = None
    spatialvi_revision: str | None = None
    spaceranger_ref: str | None = None
    spaceranger_probeset: str | None = None
    compute_env: str | None = None
    run_tag: str | None = None
    skip_stage: bool = False
    skip_spatialvi: bool = False
    skip_synindex: bool = False
    cytassist: bool = False


class StagePlanModel(BaseModel):
    name: Literal["stage", "analyze", "index"]
    pipeline: str
    revision: str
    run_name: str
    params: dict[str, Any]
    output_path: str


class SampleArtifactModel(BaseModel):
    sample_id: str
    archive_path: str
    image_path: str


class PlanResponse(BaseModel):
    stages: list[StagePlanModel]
    samples: list[SampleArtifactModel]
    samplesheet_columns: list[str]
    plan_text: str
