#!/usr/bin/env python3
"""CLI interface for the meta-workflow orchestrator."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .config import SequenceConfig, build_config, load_config_file, require_token
from .core import SequenceInterrupted, format_plan, load_artifacts, plan_sequence, run_sequence, write_summary
from .launcher import TW_BIN_ENV, PipelineClient, TowerClient
from .types import OrchestratorError, SequenceState


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the orchestrator CLI."""
    parser = _Parser(
        prog="python -m processes.orchestrator",
        description="Run the spatialvi meta-workflow on Seqera Platform: stage → spatialvi → synindex",
        epilog="Environment: TOWER_ACCESS_TOKEN (required unless --dry-run), TOWER_WORKSPACE_ID (default workspace)",
    )

    req = parser.add_argument_group("required (here or in --config)")
    req.add_argument("--input", help="Samplesheet CSV with Synapse IDs (local path or s3:// URI)")
    req.add_argument("--outdir", help="S3 output directory (s3://bucket/prefix)")
    req.add_argument("--results-parent-id", help="Synapse folder ID for results")

    parser.add_argument("--spatialvi-pipeline", help="spatialvi pipeline (default: sagebio-ada/spatialvi)")
    parser.add_argument("--spatialvi-revision", help="spatialvi revision (default: dev)")
    parser.add_argument("--spaceranger-ref", help="Space Ranger reference tarball URI")
    parser.add_argument("--spaceranger-probeset", help="Space Ranger probe set URI")
    parser.add_argument("--compute-env", help="Tower compute environment ID")
    parser.add_argument("--workspace", help="Tower workspace ID (or set TOWER_WORKSPACE_ID)")
    parser.add_argument("--skip-stage", action="store_true", default=None, help="Skip staging step (data already staged)")
    parser.add_argument("--skip-spatialvi", action="store_true", default=None, help="Skip spatialvi step")
    parser.add_argument("--skip-synindex", action="store_true", default=None, help="Skip synindex step")
    parser.add_argument("--dry-run", action="store_true", default=None, help="Print the launch plan without executing")

    parser.add_argument("--cytassist", action="store_true", default=None, help="Name the samplesheet image column 'cytaimage'")
    parser.add_argument("--poll-interval", type=float, help="Seconds between status checks (default: 60)")
    parser.add_argument("--run-tag", help="Suffix for Tower run names (default: launch timestamp; dry runs use a config digest)")
    parser.add_argument("--config", type=Path, help="YAML/JSON file with default values for the options above")
    parser.add_argument("--config-kv", nargs="*", help="Inline key=value overrides applied on top of --config")
    parser.add_argument("--summary", type=Path, help="Write a JSON run summary to this path")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    return parser


_CLI_KEYS = (
    "input",
    "outdir",
    "results_parent_id",
    "spatialvi_pipeline",
    "spatialvi_revision",
    "spaceranger_ref",
    "spaceranger_probeset",
    "compute_env",
    "workspace",
    "skip_stage",
    "skip_spatialvi",
    "skip_synindex",
    "dry_run",
    "cytassist",
    "poll_interval",
    "run_tag",
)


def _now() -> datetime:
    return datetime.now(UTC)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )


def _merge_values(args: argparse.Namespace) -> dict[str, Any]:
    values = load_config_file(args.config, args.config_kv)
    for key in _CLI_KEYS:
        val = getattr(args, key)
        if val is not None:
            values[key] = val
    return values


def _load_client(config: SequenceConfig, env: Mapping[str, str]) -> PipelineClient:
    """Build the Tower client. Tests monkeypatch this to avoid the real ``tw``."""
    return TowerClient(
        workspace=str(config.workspace),
        access_token=require_token(env),
        tw_bin=env.get(TW_BIN_ENV),
    )


def cmd_run(args: argparse.Namespace, env: Mapping[str, str]) -> int:
    """Validate everything up front, print the plan, then execute it."""
    try:
        config = build_config(_merge_values(args), env=env)
        artifacts = load_artifacts(config)
        plans = plan_sequence(config, now=_now())
        client = None if config.dry_run else _load_client(config, env)
    except Exception as e:
        print(f"[orchestrator] ✗ Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1

    print("[orchestrator] plan:")
    sys.stdout.write(format_plan(config, plans, artifacts))

    try:
        result = run_sequence(config, client=client, plans=plans)
    except SequenceInterrupted as e:
        print(f"[orchestrator] ✗ {e}", file=sys.stderr)
        print(
            f"[orchestrator] In-flight run: stage={e.stage} id={e.external_id or 'unknown'}",
            file=sys.stderr,
        )
        return 130
    except OrchestratorError as e:
        print(f"[orchestrator] ✗ Error: {e}", file=sys.stderr)
        return 1

    if args.summary:
        write_summary(config, result, args.summary)
        print(f"[orchestrator] Summary: {args.summary}")

    if result.state is SequenceState.SKIPPED_ALL:
        print("[orchestrator] All stages skipped; nothing to do")
        return 0
    if not result.ok:
        print(
            f"[orchestrator] ✗ Stage '{result.failed_stage}' failed (run {result.failed_external_id or 'n/a'}): {result.error}",
            file=sys.stderr,
        )
        return 1

    prefix = "[orchestrator] [DRY-RUN]" if config.dry_run else "[orchestrator]"
    for outcome in result.stages:
        print(f"{prefix} ✓ {outcome.name}: {outcome.external_id} {outcome.status.value}")
    if not config.dry_run:
        print(f"[orchestrator] ✓ Meta-workflow completed; results indexed to {config.results_parent}")
    return 0


def main(argv: Sequence[str] | None = None, env: Mapping[str, str] | None = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    return cmd_run(args, os.environ if env is None else env)


if __name__ == "__main__":
    sys.exit(main())
