from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path

import pandas as pd

from pipeline.io.files import write_csv


def samplesheet_columns(cytassist: bool = False) -> list[str]:
    image_col = "cytaimage" if cytassist else "image"
    return ["sample", "fastq_dir", image_col, "slide", "area"]


def build_samplesheet_df(
    rows: Iterable[Sequence[str]], *, cytassist: bool = False
) -> pd.DataFrame:
    """Build the spatialvi samplesheet from ``(sample, archive, image, slide, area)`` rows."""
    return pd.DataFrame([list(r) for r in rows], columns=samplesheet_columns(cytassist), dtype=str)


def write_samplesheet(df: pd.DataFrame, path: Path) -> Path:
    write_csv(df, path)
    return path
