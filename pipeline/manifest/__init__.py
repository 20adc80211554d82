"""Sample manifest parsing and spatialvi samplesheet rendering."""

from .parser import ManifestReader, SampleRecord, iter_records, parse_manifest
from .samplesheet import build_samplesheet_df, samplesheet_columns, write_samplesheet

__all__ = [
    "ManifestReader",
    "SampleRecord",
    "iter_records",
    "parse_manifest",
    "build_samplesheet_df",
    "samplesheet_columns",
    "write_samplesheet",
]
