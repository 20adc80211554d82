from __future__ import annotations

import json
import logging
import time
from datetime import UTC, datetime
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import FastAPI, Response

from pipeline.io.files import read_text
from pipeline.manifest.parser import iter_records
from pipeline.manifest.samplesheet import samplesheet_columns
from processes.api.models import (
    ErrorResponse,
    PlanRequest,
    PlanResponse,
    SampleArtifactModel,
    StagePlanModel,
)
from processes.orchestrator.config import build_config
from processes.orchestrator.core import format_plan, plan_sequence
from processes.orchestrator.templates import plan_artifacts
from processes.orchestrator.types import ValidationError

app = FastAPI()

logger = logging.getLogger("processes.api")


@app.get("/health")  # type: ignore[misc]
def health() -> dict[str, Any]:
    t0 = time.time()
    logger.info(json.dumps({"event": "api_enter", "endpoint": "/health"}))
    out = {
        "ok": True,
        "version": "0.1.0",
        "time": datetime.now(UTC).isoformat(),
    }
    dt = time.time() - t0
    logger.info(json.dumps({"event": "api_exit", "endpoint": "/health", "dt_s": round(dt, 6)}))
    return out


@app.post(
    "/plan",
    response_model=PlanResponse | ErrorResponse,
)  # type: ignore[misc]
def plan(req: PlanRequest, response: Response) -> PlanResponse | ErrorResponse:
    """Dry-run planning only: renders paths and launch parameters, launches nothing."""
    t0 = time.time()
    logger.info(json.dumps({"event": "api_enter", "endpoint": "/plan", "outdir": req.outdir}))
    values = req.model_dump(exclude={"manifest_csv"}, exclude_none=True)
    values["dry_run"] = True
    try:
        config = build_config(values)
        text = req.manifest_csv if req.manifest_csv is not None else read_text(config.input_manifest)
        artifacts = plan_artifacts(
            iter_records(text, default_results_parent=config.results_parent),
            config.output_base,
        )
        plans = plan_sequence(config, now=datetime.now(UTC))
    except ValidationError as e:
        response.status_code = 422
        return ErrorResponse(error="validation_error", detail=str(e))
    except (OSError, BotoCoreError, ClientError) as e:
        response.status_code = 404
        return ErrorResponse(error="manifest_unreadable", detail=str(e))
    except UnicodeDecodeError as e:
        response.status_code = 422
        return ErrorResponse(error="manifest_unreadable", detail=f"Manifest is not UTF-8 text: {e}")

    out = PlanResponse(
        stages=[StagePlanModel(**p.to_dict()) for p in plans],
        samples=[
            SampleArtifactModel(
                sample_id=a.sample_id, archive_path=a.archive_path, image_path=a.image_path
            )
            for a in artifacts
        ],
        samplesheet_columns=samplesheet_columns(config.cytassist),
        plan_text=format_plan(config, plans, artifacts),
    )
    dt = time.time() - t0
    logger.info(
        json.dumps(
            {
                "event": "api_exit",
                "endpoint": "/plan",
                "dt_s": round(dt, 6),
                "stages": [p.name for p in plans],
            }
        )
    )
    return out
