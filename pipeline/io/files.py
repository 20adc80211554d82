from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import pandas as pd

logger = logging.getLogger("pipeline.io.files")

S3_SCHEME = "s3://"


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def write_csv(df: pd.DataFrame, path: Path) -> None:
    ensure_dir(path.parent)
    df.to_csv(path, index=False)


def is_s3_uri(uri: str) -> bool:
    return str(uri).startswith(S3_SCHEME)


def split_s3_uri(uri: str) -> tuple[str, str]:
    """Split ``s3://bucket/key/parts`` into ``("bucket", "key/parts")``."""
    if not is_s3_uri(uri):
        raise ValueError(f"Not an S3 URI: {uri}")
    bucket, _, key = uri[len(S3_SCHEME) :].partition("/")
    if not bucket:
        raise ValueError(f"S3 URI has no bucket: {uri}")
    return bucket, key


def _s3_client() -> Any:
    import boto3  # lazy

    return boto3.client("s3")


def read_text(location: str | Path) -> str:
    """Read a text file from a local path or an ``s3://`` URI."""
    loc = str(location)
    if is_s3_uri(loc):
        bucket, key = split_s3_uri(loc)
        obj = _s3_client().get_object(Bucket=bucket, Key=key)
        return obj["Body"].read().decode("utf-8")
    return Path(loc).read_text(encoding="utf-8")


def probe_prefix(uri: str) -> bool:
    """Return True when the bucket behind ``uri`` answers a list request."""
    bucket, key = split_s3_uri(uri)
    try:
        _s3_client().list_objects_v2(Bucket=bucket, Prefix=key, MaxKeys=1)
    except Exception as e:
        logger.warning(
            json.dumps(
                {"event": "s3_probe_failed", "uri": uri, "error": f"{type(e).__name__}: {e}"}
            )
        )
        return False
    return True
