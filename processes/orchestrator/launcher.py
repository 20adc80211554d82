"""Tower CLI adapter: launch pipelines and read run status.

The sequencer only talks to :class:`TowerClient` through ``launch`` (returns a
:class:`PipelineRunHandle`) and ``status`` (returns the raw status string).
Parsing of ``tw`` output is confined to this module.
"""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
import tempfile
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol

import yaml

from .types import LaunchError, PipelineRunHandle, PollError

logger = logging.getLogger("processes.orchestrator.launcher")

TW_BIN_ENV = "TW_BIN"

# Text fallbacks, most specific first; the last takes the first long alphanumeric token.
_RUN_ID_PATTERNS = (
    re.compile(r"/watch/([A-Za-z0-9]+)"),
    re.compile(r"Workflow\s+([A-Za-z0-9]+)\s+submitted"),
    re.compile(r"\b([A-Za-z0-9]{20,})\b"),
)


class PipelineClient(Protocol):
    def launch(
        self,
        pipeline_ref: str,
        revision: str,
        rendered_params: Mapping[str, Any],
        *,
        stage_name: str,
        run_name: str,
        compute_env: str | None = None,
    ) -> PipelineRunHandle: ...

    def status(self, handle: PipelineRunHandle) -> str: ...


def extract_run_id(output: str) -> str | None:
    """Recover a workflow ID from ``tw launch`` output (JSON first, then text)."""
    text = output.strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, dict):
        wid = payload.get("workflowId") or payload.get("id")
        return str(wid) if wid else None
    for pattern in _RUN_ID_PATTERNS:
        m = pattern.search(text)
        if m:
            return m.group(1)
    return None


def extract_status(output: str) -> str:
    """Read the run status from ``tw runs view -o json`` output."""
    try:
        payload = json.loads(output)
    except json.JSONDecodeError as e:
        raise PollError(f"Unparsable status response: {output[:200]!r}") from e
    if not isinstance(payload, dict):
        raise PollError(f"Unexpected status payload type: {type(payload).__name__}")
    status = payload.get("status")
    if status is None and isinstance(payload.get("general"), dict):
        status = payload["general"].get("status")
    if not status:
        raise PollError("Status response has no 'status' field")
    return str(status).upper()


def _redact(cmd: Sequence[str], secrets: Sequence[str]) -> str:
    line = " ".join(cmd)
    for s in secrets:
        if s:
            line = line.replace(s, "***")
    return line


class TowerClient:
    """Launch and inspect Seqera Platform runs through the ``tw`` CLI."""

    def __init__(
        self,
        *,
        workspace: str,
        access_token: str,
        tw_bin: str | None = None,
        timeout_s: float = 300.0,
    ) -> None:
        self.workspace = workspace
        self._token = access_token
        self.tw_bin = tw_bin or "tw"
        self.timeout_s = timeout_s

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        env = dict(os.environ)
        env["TOWER_ACCESS_TOKEN"] = self._token
        cmd = [self.tw_bin, "-o", "json", *args]
        logger.info(json.dumps({"event": "tw_exec", "cmd": _redact(cmd, [self._token])}))
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            env=env,
            timeout=self.timeout_s,
            check=False,
        )

    def launch(
        self,
        pipeline_ref: str,
        revision: str,
        rendered_params: Mapping[str, Any],
        *,
        stage_name: str,
        run_name: str,
        compute_env: str | None = None,
    ) -> PipelineRunHandle:
        with tempfile.TemporaryDirectory(prefix=f"{stage_name}-") as td:
            params_file = Path(td) / "params.yaml"
            params_file.write_text(
                yaml.safe_dump(dict(rendered_params), sort_keys=False), encoding="utf-8"
            )
            args = [
                "launch",
                pipeline_ref,
                "--revision",
                revision,
                "--workspace",
                self.workspace,
                "--name",
                run_name,
            ]
            if compute_env:
                args += ["--compute-env", compute_env]
            args += ["--params-file", str(params_file)]
            try:
                proc = self._run(args)
            except FileNotFoundError as e:
                raise LaunchError(f"tw binary not found: {self.tw_bin}", stage=stage_name) from e
            except subprocess.TimeoutExpired as e:
                raise LaunchError(
                    f"tw launch timed out after {self.timeout_s}s", stage=stage_name
                ) from e

        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout or "").strip()[:500]
            raise LaunchError(
                f"tw launch exited {proc.returncode}: {detail}", stage=stage_name
            )
        run_id = extract_run_id(proc.stdout)
        if not run_id:
            raise LaunchError(
                f"Could not extract run ID from launch output: {proc.stdout.strip()[:200]!r}",
                stage=stage_name,
            )
        return PipelineRunHandle(
            stage_name=stage_name,
            external_id=run_id,
            launch_parameters=dict(rendered_params),
        )

    def status(self, handle: PipelineRunHandle) -> str:
        args = ["runs", "view", "-i", handle.external_id, "--workspace", self.workspace]
        try:
            proc = self._run(args)
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            raise PollError(
                f"Status check failed: {e}",
                stage=handle.stage_name,
                external_id=handle.external_id,
            ) from e
        if proc.returncode != 0:
            raise PollError(
                f"tw runs view exited {proc.returncode}",
                stage=handle.stage_name,
                external_id=handle.external_id,
            )
        return extract_status(proc.stdout)
