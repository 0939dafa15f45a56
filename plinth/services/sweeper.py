"""Stale-step sweep.

A step whose executor died mid-flight stays ``running`` forever, and
advance_run treats running steps as a no-op. The sweep fails such steps
with STEP_TIMEOUT once they exceed the deadline, which makes them
retryable again.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from plinth.config import settings
from plinth.errors import StepTimeoutError
from plinth.services import run_store
from plinth.services.orchestrator import mark_step_failed
from plinth.services.step_status import get_step_status_map
from plinth.timeutils import parse_datetime, utcnow

logger = logging.getLogger(__name__)


def sweep_stale_steps(
    db: Session,
    timeout_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Fail every step that has been running longer than the timeout.

    Running steps without a readable started_at are treated as stale.

    Args:
        db: Database session
        timeout_seconds: Deadline for a running step (defaults to STEP_TIMEOUT_SECONDS)
        now: Evaluation time (defaults to current UTC time)

    Returns:
        Number of steps marked failed
    """
    timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.STEP_TIMEOUT_SECONDS
    now = now or utcnow()
    deadline = now - timedelta(seconds=timeout_seconds)

    swept = 0
    for run in run_store.list_active_runs(db):
        for step_name, state in get_step_status_map(run).items():
            if state.status != "running":
                continue

            started = parse_datetime(state.started_at)
            if started is not None and started > deadline:
                continue

            error = StepTimeoutError(
                f"Step '{step_name}' exceeded {timeout_seconds}s without finishing",
                step=step_name,
                details={"timeout_seconds": timeout_seconds},
            )
            result = mark_step_failed(db, run.id, step_name, error)
            if result.ok:
                swept += 1
            else:
                # Finished or already swept by another caller in the meantime
                logger.info(f"Skipped sweeping step '{step_name}' of run {run.id}: {result.error.code}")

    if swept:
        logger.warning(f"Marked {swept} stale step(s) as timed out")
    return swept
