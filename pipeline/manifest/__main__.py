from __future__ import annotations

import argparse
import sys
from pathlib import Path

from processes.orchestrator.config import normalize_base
from processes.orchestrator.templates import plan_artifacts, samplesheet_path
from processes.orchestrator.types import ValidationError

from .parser import parse_manifest
from .samplesheet import build_samplesheet_df, write_samplesheet


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m pipeline.manifest",
        description="Render the spatialvi samplesheet a manifest stages to",
    )
    p.add_argument("--input", required=True, help="Manifest CSV (local path or s3:// URI)")
    p.add_argument("--outdir", required=True, help="Run output base (s3://bucket/prefix)")
    p.add_argument("--results-parent-id", help="Default Synapse results folder for rows without one")
    p.add_argument("--cytassist", action="store_true")
    p.add_argument("--out-csv", type=Path, help="Write here instead of printing to stdout")
    return p


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    base = normalize_base(args.outdir)
    try:
        records = parse_manifest(args.input, default_results_parent=args.results_parent_id)
        artifacts = plan_artifacts(records, base)
    except ValidationError as e:
        print(f"Validation error: {e}", file=sys.stderr)
        return 1
    df = build_samplesheet_df((a.sample_row for a in artifacts), cytassist=args.cytassist)
    if args.out_csv:
        write_samplesheet(df, args.out_csv)
        print(f"{len(df)} samples -> {args.out_csv} (staged as {samplesheet_path(base)})")
    else:
        sys.stdout.write(df.to_csv(index=False))
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
