from __future__ import annotations

import time
from datetime import UTC, datetime
from pathlib import Path

from processes.orchestrator import cli, core
from processes.orchestrator.config import build_config
from processes.orchestrator.core import format_plan, load_artifacts, plan_sequence
from tests.fixtures.stub_tower import StubTowerClient

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)
LATER = datetime(2025, 6, 2, 8, 30, 0, tzinfo=UTC)


def _values(manifest: Path) -> dict[str, object]:
    return {
        "input": str(manifest),
        "outdir": "s3://bucket/proj/",
        "results_parent_id": "syn1",
        "workspace": "ws1",
        "spaceranger_ref": "s3://refs/GRCh38.tar.gz",
        "dry_run": True,
    }


def _argv(manifest: Path, *extra: str) -> list[str]:
    return [
        "--input",
        str(manifest),
        "--outdir",
        "s3://bucket/proj",
        "--results-parent-id",
        "syn1",
        "--workspace",
        "ws1",
        *extra,
    ]


def test_format_plan_ignores_the_clock(two_sample_manifest: Path) -> None:
    config = build_config(_values(two_sample_manifest))
    first = format_plan(config, plan_sequence(config, now=NOW), load_artifacts(config))
    second = format_plan(config, plan_sequence(config, now=LATER), load_artifacts(config))
    assert first == second
    assert "[1/3] stage: tw launch" in first
    assert "[3/3] index: tw launch" in first
    assert "spaceranger_reference: s3://refs/GRCh38.tar.gz" in first
    assert "--name spatialvi-dry-" in first
    assert "20250601" not in first


def test_dry_run_tag_follows_config(two_sample_manifest: Path) -> None:
    base = build_config(_values(two_sample_manifest))
    other = build_config({**_values(two_sample_manifest), "spatialvi_revision": "1.0"})
    assert plan_sequence(base, now=NOW)[0].run_name != plan_sequence(other, now=NOW)[0].run_name


def test_cli_dry_run_output_identical(two_sample_manifest: Path, capsys) -> None:
    argv = _argv(two_sample_manifest, "--dry-run")
    assert cli.main(argv, env={}) == 0
    first = capsys.readouterr().out
    time.sleep(1.1)
    assert cli.main(argv, env={}) == 0
    second = capsys.readouterr().out
    assert first == second
    assert "[DRY-RUN]" in first


def test_run_tag_matches_dry_run_and_real_run(two_sample_manifest: Path, monkeypatch, capsys) -> None:
    client = StubTowerClient()
    monkeypatch.setattr(cli, "_load_client", lambda config, env: client)
    monkeypatch.setattr(core, "probe_prefix", lambda _uri: True)

    assert cli.main(_argv(two_sample_manifest, "--run-tag", "batch7", "--dry-run"), env={}) == 0
    dry_out = capsys.readouterr().out
    assert cli.main(_argv(two_sample_manifest, "--run-tag", "batch7"), env={"TOWER_ACCESS_TOKEN": "t"}) == 0

    names = [rec["run_name"] for rec in client.launched]
    assert names == ["stage-batch7", "spatialvi-batch7", "synindex-batch7"]
    for name in names:
        assert f"--name {name}" in dry_out
