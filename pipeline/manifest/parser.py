"""Sample manifest parsing.

A manifest is a CSV with one row per sample::

    sample,fastq_1,fastq_2,fastq_3,fastq_4,image,slide,area[,results_parent_id]

File reference columns hold Synapse IDs (``syn123``), ``syn://`` URIs, or the
``s3://`` URIs substituted by the staging pipeline. The image column may be
named ``cytaimage`` for CytAssist runs.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from pipeline.io.files import read_text
from processes.orchestrator.types import ValidationError

FASTQ_COLUMNS = ("fastq_1", "fastq_2", "fastq_3", "fastq_4")
IMAGE_COLUMNS = ("image", "cytaimage")
REQUIRED_COLUMNS = ("sample", *FASTQ_COLUMNS, "slide")


class SampleRecord(BaseModel):  # type: ignore[misc]
    model_config = ConfigDict(frozen=True)

    sample_id: str
    slide: str
    area: str = ""
    file_references: tuple[str, str, str, str, str]
    results_destination: str

    @field_validator("sample_id", "slide", "results_destination")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("file_references")
    @classmethod
    def _refs_not_blank(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        refs = tuple(r.strip() for r in v)
        if any(not r for r in refs):
            raise ValueError("file references must not be empty")
        return refs

    @property
    def fastq_references(self) -> tuple[str, ...]:
        return self.file_references[:4]

    @property
    def image_reference(self) -> str:
        return self.file_references[4]

    def to_row(self, image_column: str = "image") -> dict[str, str]:
        """Serialize back to manifest columns (required columns plus ``area``)."""
        row = {"sample": self.sample_id}
        row.update(dict(zip(FASTQ_COLUMNS, self.fastq_references, strict=True)))
        row[image_column] = self.image_reference
        row["slide"] = self.slide
        row["area"] = self.area
        return row


def _image_column(header: Sequence[str]) -> str:
    for name in IMAGE_COLUMNS:
        if name in header:
            return name
    raise ValidationError(
        f"Manifest header missing image column (one of {list(IMAGE_COLUMNS)})"
    )


def _check_header(header: Sequence[str]) -> str:
    missing = [c for c in REQUIRED_COLUMNS if c not in header]
    if missing:
        raise ValidationError(f"Manifest header missing required columns: {missing}")
    return _image_column(header)


def iter_records(
    text: str, *, default_results_parent: str | None = None
) -> Iterator[SampleRecord]:
    """Yield one SampleRecord per data row of manifest ``text``."""
    reader = csv.reader(io.StringIO(text))
    header: list[str] | None = None
    image_col = "image"
    for line_no, raw in enumerate(reader, start=1):
        if not raw or all(not cell.strip() for cell in raw):
            continue
        if header is None:
            header = [h.strip() for h in raw]
            image_col = _check_header(header)
            continue
        if len(raw) != len(header):
            raise ValidationError(
                f"Manifest line {line_no}: expected {len(header)} fields, got {len(raw)}"
            )
        rec = dict(zip(header, (cell.strip() for cell in raw), strict=True))
        results_dest = rec.get("results_parent_id") or default_results_parent or ""
        try:
            yield SampleRecord(
                sample_id=rec["sample"],
                slide=rec["slide"],
                area=rec.get("area", ""),
                file_references=(
                    *(rec[c] for c in FASTQ_COLUMNS),
                    rec[image_col],
                ),
                results_destination=results_dest,
            )
        except PydanticValidationError as e:
            fields = ", ".join(".".join(map(str, err["loc"])) for err in e.errors())
            raise ValidationError(
                f"Manifest line {line_no} (sample '{rec.get('sample', '')}'): invalid {fields}"
            ) from e
    if header is None:
        raise ValidationError("Manifest is empty (no header row)")


class ManifestReader:
    """Re-iterable view over a manifest; each pass re-reads the source."""

    def __init__(
        self,
        source: str | Path,
        *,
        default_results_parent: str | None = None,
        loader: Callable[[str | Path], str] = read_text,
    ) -> None:
        self.source = source
        self.default_results_parent = default_results_parent
        self._loader = loader

    def __iter__(self) -> Iterator[SampleRecord]:
        text = self._loader(self.source)
        return iter_records(text, default_results_parent=self.default_results_parent)


def parse_manifest(
    source: str | Path, *, default_results_parent: str | None = None
) -> ManifestReader:
    return ManifestReader(source, default_results_parent=default_results_parent)
