"""Run configuration for the meta-workflow sequencer.

Values are merged once at startup, lowest precedence first: built-in
defaults, an optional YAML/JSON config file, ``key=value`` overrides, explicit
CLI flags, and finally ``TOWER_WORKSPACE_ID`` as a workspace fallback. The
resulting :class:`SequenceConfig` is frozen and passed explicitly to every
component; nothing below the CLI reads the environment.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from pipeline.io.files import is_s3_uri

from .types import STAGE_ORDER, StageName, ValidationError

TOKEN_ENV = "TOWER_ACCESS_TOKEN"
WORKSPACE_ENV = "TOWER_WORKSPACE_ID"

STAGING_PIPELINE = "ajs3nj/synapse_spatialvi_nf_pipeline"
STAGING_REVISION = "meta-workflow"
SPATIALVI_PIPELINE = "sagebio-ada/spatialvi"
SPATIALVI_REVISION = "dev"
POLL_INTERVAL_S = 60.0

# config-file / CLI key -> SequenceConfig field
_KEY_MAP: dict[str, str] = {
    "input": "input_manifest",
    "outdir": "output_base",
    "results_parent_id": "results_parent",
    "staging_pipeline": "staging_pipeline",
    "staging_revision": "staging_revision",
    "spatialvi_pipeline": "analysis_pipeline",
    "spatialvi_revision": "analysis_revision",
    "spaceranger_ref": "spaceranger_reference",
    "spaceranger_probeset": "spaceranger_probeset",
    "compute_env": "compute_env",
    "workspace": "workspace",
    "skip_stage": "skip_stage",
    "skip_spatialvi": "skip_analyze",
    "skip_synindex": "skip_index",
    "dry_run": "dry_run",
    "cytassist": "cytassist",
    "poll_interval": "poll_interval",
    "run_tag": "run_tag",
}

_BOOL_FIELDS = ("skip_stage", "skip_analyze", "skip_index", "dry_run", "cytassist")
_RUN_TAG_RE = re.compile(r"[A-Za-z0-9_-]{1,40}")


@dataclass(frozen=True)
class StageFlags:
    skip_stage: bool = False
    skip_analyze: bool = False
    skip_index: bool = False

    def skipped(self, stage: StageName) -> bool:
        return {
            "stage": self.skip_stage,
            "analyze": self.skip_analyze,
            "index": self.skip_index,
        }[stage]


@dataclass(frozen=True)
class SequenceConfig:
    input_manifest: str
    output_base: str
    results_parent: str
    stage_flags: StageFlags = field(default_factory=StageFlags)
    dry_run: bool = False
    staging_pipeline: str = STAGING_PIPELINE
    staging_revision: str = STAGING_REVISION
    analysis_pipeline: str = SPATIALVI_PIPELINE
    analysis_revision: str = SPATIALVI_REVISION
    spaceranger_reference: str | None = None
    spaceranger_probeset: str | None = None
    compute_env: str | None = None
    workspace: str | None = None
    poll_interval: float = POLL_INTERVAL_S
    cytassist: bool = False
    run_tag: str | None = None

    @property
    def stages(self) -> tuple[StageName, ...]:
        """Stages left in the sequence after skip flags are applied."""
        return tuple(s for s in STAGE_ORDER if not self.stage_flags.skipped(s))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _coerce_scalar(val: str) -> int | float | bool | str:
    lower = val.lower()
    if lower in ("true", "false"):
        return lower == "true"
    try:
        if "." in val:
            return float(val)
        return int(val)
    except ValueError:
        return val


def _as_bool(key: str, val: Any) -> bool:
    if isinstance(val, bool):
        return val
    if isinstance(val, str) and val.lower() in ("true", "false"):
        return val.lower() == "true"
    raise ValidationError(f"Config key '{key}' must be a boolean, got {val!r}")


def load_config_file(path: Path | None, kv: Sequence[str] | None = None) -> dict[str, Any]:
    """Load a YAML/JSON config file and apply inline ``key=value`` overrides."""
    cfg: dict[str, Any] = {}
    if path is not None:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() in (".yaml", ".yml"):
            import yaml  # lazy

            try:
                cfg = dict(yaml.safe_load(text) or {})
            except yaml.YAMLError as e:
                raise ValidationError(f"Failed to parse YAML config {path}: {e}") from e
        else:
            try:
                cfg = dict(json.loads(text))
            except json.JSONDecodeError as e:
                raise ValidationError(f"Failed to parse JSON config {path}: {e}") from e
    if kv:
        for item in kv:
            if "=" not in item:
                raise ValidationError(f"Invalid --config-kv entry (expected key=value): {item}")
            k, v = item.split("=", 1)
            cfg[k.strip()] = _coerce_scalar(v.strip())
    unknown = sorted(set(cfg) - set(_KEY_MAP))
    if unknown:
        raise ValidationError(f"Unknown config keys: {unknown}")
    return cfg


def normalize_base(uri: str) -> str:
    return uri.rstrip("/")


def build_config(
    values: Mapping[str, Any], *, env: Mapping[str, str] | None = None
) -> SequenceConfig:
    """Validate merged ``values`` (CLI/config-file keys) into a SequenceConfig."""
    env = env or {}
    fields: dict[str, Any] = {}
    for key, val in values.items():
        if val is None or key not in _KEY_MAP:
            continue
        fields[_KEY_MAP[key]] = val

    for key, flag in (("input", "input_manifest"), ("outdir", "output_base"), ("results_parent_id", "results_parent")):
        if not str(fields.get(flag) or "").strip():
            raise ValidationError(f"--{key.replace('_', '-')} is required")

    output_base = normalize_base(str(fields["output_base"]).strip())
    if not is_s3_uri(output_base):
        raise ValidationError(f"--outdir must be an s3:// URI, got {fields['output_base']!r}")
    fields["output_base"] = output_base

    for name in _BOOL_FIELDS:
        if name in fields:
            fields[name] = _as_bool(name, fields[name])
    flags = StageFlags(
        skip_stage=fields.pop("skip_stage", False),
        skip_analyze=fields.pop("skip_analyze", False),
        skip_index=fields.pop("skip_index", False),
    )

    try:
        poll = float(fields.get("poll_interval", POLL_INTERVAL_S))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"poll_interval must be a number, got {fields['poll_interval']!r}") from e
    if poll <= 0:
        raise ValidationError("poll_interval must be positive")
    fields["poll_interval"] = poll

    tag = fields.get("run_tag")
    if tag is not None:
        tag = str(tag).strip()
        if not _RUN_TAG_RE.fullmatch(tag):
            raise ValidationError(
                f"run_tag must be 1-40 letters, digits, '_' or '-', got {fields['run_tag']!r}"
            )
        fields["run_tag"] = tag

    if not fields.get("workspace"):
        fields["workspace"] = env.get(WORKSPACE_ENV) or None
    if not fields["workspace"]:
        raise ValidationError(f"--workspace or {WORKSPACE_ENV} required")

    for name in ("input_manifest", "results_parent", "workspace"):
        fields[name] = str(fields[name]).strip()

    return SequenceConfig(stage_flags=flags, **fields)


def require_token(env: Mapping[str, str]) -> str:
    token = env.get(TOKEN_ENV, "")
    if not token:
        raise ValidationError(f"{TOKEN_ENV} not set")
    return token
