from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable

from .launcher import PipelineClient
from .types import PipelineRunHandle, PollError, RunStatus

logger = logging.getLogger("processes.orchestrator.monitor")

# Tower workflow statuses that are not RunStatus members
_STATUS_ALIASES = {
    "SUBMITTED": RunStatus.PENDING,
    "QUEUED": RunStatus.PENDING,
}


def to_run_status(raw: str) -> RunStatus:
    key = raw.strip().upper()
    if key in _STATUS_ALIASES:
        return _STATUS_ALIASES[key]
    try:
        return RunStatus(key)
    except ValueError:
        return RunStatus.UNKNOWN


def await_run(
    client: PipelineClient,
    handle: PipelineRunHandle,
    poll_interval: float,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> RunStatus:
    """Poll ``handle`` every ``poll_interval`` seconds until it reaches a terminal status.

    An unreadable or unrecognised status ends the wait with ``UNKNOWN`` on the
    first occurrence. There is no deadline: a run that never terminates keeps
    this call blocked.
    """
    while True:
        try:
            status = to_run_status(client.status(handle))
        except PollError as e:
            logger.warning(
                json.dumps(
                    {
                        "event": "poll_error",
                        "stage": handle.stage_name,
                        "run_id": handle.external_id,
                        "error": str(e),
                    }
                )
            )
            return RunStatus.UNKNOWN

        if status.is_terminal:
            logger.info(
                json.dumps(
                    {
                        "event": "run_terminal",
                        "stage": handle.stage_name,
                        "run_id": handle.external_id,
                        "status": status.value,
                    }
                )
            )
            return status

        logger.info(
            json.dumps(
                {
                    "event": "run_waiting",
                    "stage": handle.stage_name,
                    "run_id": handle.external_id,
                    "status": status.value,
                    "next_poll_s": poll_interval,
                }
            )
        )
        print(
            f"[orchestrator] {handle.stage_name} run {handle.external_id}: "
            f"{status.value} (checking again in {poll_interval:g}s)"
        )
        sleep(poll_interval)
