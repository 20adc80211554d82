from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path for package imports like `pipeline.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

MANIFEST_HEADER = "sample,fastq_1,fastq_2,fastq_3,fastq_4,image,slide,area"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def write_manifest(tmp_path: Path):
    """Write manifest rows (header included) and return the file path."""

    def _write(*rows: str, header: str = MANIFEST_HEADER, name: str = "manifest.csv") -> Path:
        path = tmp_path / name
        path.write_text("\n".join([header, *rows]) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def two_sample_manifest(write_manifest) -> Path:
    return write_manifest(
        "SAMPLE1,syn1,syn2,syn3,syn4,syn5,V11J26,B1",
        "SAMPLE2,syn6,syn7,syn8,syn9,syn10,V11J26,",
    )
