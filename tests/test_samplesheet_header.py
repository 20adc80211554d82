from __future__ import annotations

from pathlib import Path

import pandas as pd

from pipeline.manifest import __main__ as manifest_cli
from pipeline.manifest.samplesheet import build_samplesheet_df, samplesheet_columns

ROW = ("S1", "s3://b/p/staging/S1/S1_archive.tar.gz", "s3://b/p/staging/S1/img.tif", "V1", "A1")


def test_default_header_uses_image() -> None:
    assert samplesheet_columns() == ["sample", "fastq_dir", "image", "slide", "area"]
    df = build_samplesheet_df([ROW])
    assert df.to_csv(index=False).splitlines()[0] == "sample,fastq_dir,image,slide,area"


def test_cytassist_header_uses_cytaimage() -> None:
    df = build_samplesheet_df([ROW], cytassist=True)
    assert list(df.columns) == ["sample", "fastq_dir", "cytaimage", "slide", "area"]
    assert df.iloc[0]["cytaimage"] == ROW[2]


def test_empty_area_survives_as_empty_field() -> None:
    df = build_samplesheet_df([(*ROW[:4], "")])
    assert df.to_csv(index=False).splitlines()[1].endswith(",V1,")


def test_manifest_cli_writes_samplesheet(two_sample_manifest: Path, tmp_path: Path, capsys) -> None:
    out_csv = tmp_path / "sheet" / "spatialvi_samplesheet.csv"
    rc = manifest_cli.main(
        [
            "--input",
            str(two_sample_manifest),
            "--outdir",
            "s3://bucket/proj/",
            "--results-parent-id",
            "syn1",
            "--out-csv",
            str(out_csv),
        ]
    )
    assert rc == 0
    df = pd.read_csv(out_csv, dtype=str, keep_default_na=False)
    assert list(df["sample"]) == ["SAMPLE1", "SAMPLE2"]
    assert df.iloc[1]["fastq_dir"] == "s3://bucket/proj/staging/SAMPLE2/SAMPLE2_archive.tar.gz"
    assert df.iloc[1]["area"] == ""
    assert "s3://bucket/proj/spatialvi_samplesheet.csv" in capsys.readouterr().out


def test_manifest_cli_rejects_duplicates(write_manifest, capsys) -> None:
    path = write_manifest("S1,a,b,c,d,img,V1,A1", "S1,a,b,c,d,img,V1,A2")
    rc = manifest_cli.main(["--input", str(path), "--outdir", "s3://b/p", "--results-parent-id", "syn1"])
    assert rc == 1
    assert "Duplicate sample 'S1'" in capsys.readouterr().err
