from __future__ import annotations

import csv
import io
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from pipeline.manifest.parser import (
    FASTQ_COLUMNS,
    ManifestReader,
    SampleRecord,
    iter_records,
    parse_manifest,
)
from processes.orchestrator.types import ValidationError

REQUIRED = ["sample", *FASTQ_COLUMNS, "image", "slide", "area"]


def test_roundtrip_required_columns(two_sample_manifest: Path) -> None:
    records = list(parse_manifest(two_sample_manifest, default_results_parent="syn999"))
    original = list(csv.DictReader(io.StringIO(two_sample_manifest.read_text(encoding="utf-8"))))
    assert len(records) == 2
    for rec, row in zip(records, original, strict=True):
        assert rec.to_row() == {k: row[k] for k in REQUIRED}


def test_fields_and_optional_area(two_sample_manifest: Path) -> None:
    first, second = parse_manifest(two_sample_manifest, default_results_parent="syn999")
    assert first.sample_id == "SAMPLE1"
    assert first.fastq_references == ("syn1", "syn2", "syn3", "syn4")
    assert first.image_reference == "syn5"
    assert first.area == "B1"
    assert second.area == ""
    assert second.results_destination == "syn999"


def test_results_parent_column_overrides_default(write_manifest) -> None:
    path = write_manifest(
        "S1,a,b,c,d,img,V1,A1,syn111",
        "S2,a,b,c,d,img,V1,A1,",
        header="sample,fastq_1,fastq_2,fastq_3,fastq_4,image,slide,area,results_parent_id",
    )
    s1, s2 = parse_manifest(path, default_results_parent="syn999")
    assert s1.results_destination == "syn111"
    assert s2.results_destination == "syn999"


def test_missing_results_destination_is_an_error(write_manifest) -> None:
    path = write_manifest("S1,a,b,c,d,img,V1,A1")
    with pytest.raises(ValidationError, match="results_destination"):
        list(parse_manifest(path))


def test_missing_required_column(write_manifest) -> None:
    path = write_manifest("S1,a,b,c,d,img,A1", header="sample,fastq_1,fastq_2,fastq_3,fastq_4,image,area")
    with pytest.raises(ValidationError, match="slide"):
        list(parse_manifest(path, default_results_parent="syn1"))


def test_missing_image_column(write_manifest) -> None:
    path = write_manifest("S1,a,b,c,d,V1,A1", header="sample,fastq_1,fastq_2,fastq_3,fastq_4,slide,area")
    with pytest.raises(ValidationError, match="image"):
        list(parse_manifest(path, default_results_parent="syn1"))


def test_short_row_rejected(write_manifest) -> None:
    path = write_manifest("S1,a,b,c,d,img,V1,A1", "S2,a,b,c")
    with pytest.raises(ValidationError, match="line 3"):
        list(parse_manifest(path, default_results_parent="syn1"))


def test_blank_required_value_rejected(write_manifest) -> None:
    path = write_manifest("S1,a,,c,d,img,V1,A1")
    with pytest.raises(ValidationError, match="file_references"):
        list(parse_manifest(path, default_results_parent="syn1"))


def test_empty_manifest_rejected() -> None:
    with pytest.raises(ValidationError, match="empty"):
        list(iter_records("\n\n", default_results_parent="syn1"))


def test_cytaimage_header_accepted(write_manifest) -> None:
    path = write_manifest(
        "S1,a,b,c,d,cyta.tif,V1,A1",
        header="sample,fastq_1,fastq_2,fastq_3,fastq_4,cytaimage,slide,area",
    )
    (rec,) = parse_manifest(path, default_results_parent="syn1")
    assert rec.image_reference == "cyta.tif"
    assert rec.to_row(image_column="cytaimage")["cytaimage"] == "cyta.tif"


def test_duplicate_samples_are_not_a_parse_error(write_manifest) -> None:
    path = write_manifest("S1,a,b,c,d,img,V1,A1", "S1,e,f,g,h,img2,V1,A2")
    assert [r.sample_id for r in parse_manifest(path, default_results_parent="syn1")] == ["S1", "S1"]


def test_reader_is_lazy_and_restartable() -> None:
    calls: list[str] = []
    text = "sample,fastq_1,fastq_2,fastq_3,fastq_4,image,slide,area\nS1,a,b,c,d,img,V1,A1\n"

    def loader(source):
        calls.append(str(source))
        return text

    reader = ManifestReader("mem://manifest.csv", default_results_parent="syn1", loader=loader)
    assert calls == []
    first = list(reader)
    second = list(reader)
    assert first == second
    assert len(calls) == 2


def test_record_is_immutable() -> None:
    rec = SampleRecord(
        sample_id="S1",
        slide="V1",
        file_references=("a", "b", "c", "d", "e"),
        results_destination="syn1",
    )
    with pytest.raises(PydanticValidationError):
        rec.sample_id = "S2"  # type: ignore[misc]
