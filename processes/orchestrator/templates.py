"""Path and launch-parameter templating.

Everything here is plain string construction: no network, no filesystem.
All locations hang off the run's ``output_base``::

    {base}/staging/{sample}/{sample}_archive.tar.gz
    {base}/staging/{sample}/{image_basename}
    {base}/spatialvi_samplesheet.csv
    {base}/results/{sample}/
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pipeline.manifest.parser import SampleRecord

from .config import SequenceConfig
from .types import StageName, StagePlan, ValidationError

ARCHIVE_SUFFIX = "_archive.tar.gz"
SAMPLESHEET_NAME = "spatialvi_samplesheet.csv"

RUN_NAME_PREFIX: dict[str, str] = {
    "stage": "stage",
    "analyze": "spatialvi",
    "index": "synindex",
}


@dataclass(frozen=True)
class StagingArtifact:
    sample_id: str
    archive_path: str
    image_path: str
    sample_row: tuple[str, str, str, str, str]


def _join(base: str, *parts: str) -> str:
    segs = [base.rstrip("/")]
    segs.extend(p.strip("/") for p in parts if p.strip("/"))
    return "/".join(segs)


def staging_root(output_base: str) -> str:
    return _join(output_base, "staging")


def results_root(output_base: str) -> str:
    return _join(output_base, "results")


def samplesheet_path(output_base: str) -> str:
    return _join(output_base, SAMPLESHEET_NAME)


def image_basename(reference: str) -> str:
    """Last path segment of an image reference (the reference itself for a bare ID)."""
    return reference.rstrip("/").rsplit("/", 1)[-1]


def archive_path(sample_id: str, output_base: str) -> str:
    return _join(output_base, "staging", sample_id, f"{sample_id}{ARCHIVE_SUFFIX}")


def results_path(sample_id: str, output_base: str) -> str:
    return _join(output_base, "results", sample_id) + "/"


def template_artifact(record: SampleRecord, output_base: str) -> StagingArtifact:
    archive = archive_path(record.sample_id, output_base)
    image = _join(output_base, "staging", record.sample_id, image_basename(record.image_reference))
    return StagingArtifact(
        sample_id=record.sample_id,
        archive_path=archive,
        image_path=image,
        sample_row=(record.sample_id, archive, image, record.slide, record.area),
    )


def plan_artifacts(records: Iterable[SampleRecord], output_base: str) -> list[StagingArtifact]:
    """Template every record, rejecting sample IDs that would share a staging prefix."""
    out: list[StagingArtifact] = []
    seen: set[str] = set()
    for rec in records:
        if rec.sample_id in seen:
            raise ValidationError(
                f"Duplicate sample '{rec.sample_id}' in manifest; staging paths would collide"
            )
        seen.add(rec.sample_id)
        out.append(template_artifact(rec, output_base))
    return out


def config_digest(config: SequenceConfig) -> str:
    """Short hash of everything that shapes the launches (``dry_run`` excluded)."""
    material = {k: v for k, v in config.to_dict().items() if k != "dry_run"}
    return hashlib.sha256(json.dumps(material, sort_keys=True).encode("utf-8")).hexdigest()[:8]


def run_tag(config: SequenceConfig, now: datetime) -> str:
    """Suffix shared by every run name of one sequence.

    An explicit ``run_tag`` wins. Otherwise a dry run is tagged with
    ``dry-<config digest>`` so repeated dry runs print identical plans, and a
    real run is stamped with ``now``.
    """
    if config.run_tag:
        return config.run_tag
    if config.dry_run:
        return f"dry-{config_digest(config)}"
    return now.strftime("%Y%m%d-%H%M%S")


def run_name(stage: StageName, tag: str) -> str:
    return f"{RUN_NAME_PREFIX[stage]}-{tag}"


def stage_output(stage: StageName, output_base: str) -> str:
    if stage == "analyze":
        return results_root(output_base)
    # stage and index both publish into the staging tree / content store
    return staging_root(output_base)


def render_params(
    stage: StageName, config: SequenceConfig, *, upstream_output: str
) -> dict[str, Any]:
    base = config.output_base
    if stage == "stage":
        return {
            "entry": "stage",
            "input": config.input_manifest,
            "outdir": base,
            "results_parent_id": config.results_parent,
        }
    if stage == "analyze":
        params: dict[str, Any] = {
            "input": samplesheet_path(base),
            "outdir": results_root(base),
        }
        if config.spaceranger_reference:
            params["spaceranger_reference"] = config.spaceranger_reference
        if config.spaceranger_probeset:
            params["spaceranger_probeset"] = config.spaceranger_probeset
        return params
    if stage == "index":
        return {
            "entry": "synindex",
            "input": config.input_manifest,
            "outdir": base,
            "results_parent_id": config.results_parent,
            "results_dir": upstream_output,
        }
    raise ValueError(f"Unknown stage: {stage}")


def render_stage(
    stage: StageName,
    config: SequenceConfig,
    *,
    upstream_output: str,
    now: datetime,
) -> StagePlan:
    if stage == "analyze":
        pipeline, revision = config.analysis_pipeline, config.analysis_revision
    else:
        pipeline, revision = config.staging_pipeline, config.staging_revision
    return StagePlan(
        name=stage,
        pipeline=pipeline,
        revision=revision,
        run_name=run_name(stage, run_tag(config, now)),
        params=render_params(stage, config, upstream_output=upstream_output),
        output_path=stage_output(stage, config.output_base),
    )
