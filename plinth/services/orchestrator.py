"""Run orchestrator.

Decides whether a named step of a run should be started, resumed or left
alone, and performs the claim atomically. There is no in-process lock: the
claim is a conditional write on ``metrics_version``, so of any number of
concurrent callers that read the same run exactly one wins and the others
get ``noop``. The persisted ``running`` status is the lock while a step works.

Every public function returns a typed result (``ok=True``) or a ``Failure``
and never lets an exception escape.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from sqlalchemy.orm import Session

from plinth.config import settings
from plinth.errors import (
    AppError,
    Failure,
    InvalidTransitionError,
    NotFoundError,
    RunFailedError,
    UnknownAppError,
    to_app_error,
)
from plinth.models.project import Project
from plinth.models.run import ProjectRun
from plinth.schemas.run import AdvanceAction, StepState
from plinth.schemas.telemetry import (
    merge_telemetry,
    parse_telemetry,
    sanitize_app_error,
)
from plinth.services import run_store
from plinth.services.step_status import (
    STEP_STATUS_KEY,
    get_step_status,
    get_step_status_map,
    serialize_step_status,
)
from plinth.timeutils import isoformat, parse_datetime, utcnow

logger = logging.getLogger(__name__)

TELEMETRY_KEY = "telemetry"


@dataclass
class AdvanceResult:
    """Outcome of advance_run."""

    run: ProjectRun
    step: str
    action: AdvanceAction
    step_status: StepState

    ok = True


@dataclass
class StepUpdate:
    """Outcome of a step completion or failure write."""

    run: ProjectRun
    step: str
    step_status: StepState

    ok = True


@dataclass
class RunUpdate:
    """Outcome of a run-level terminal write; changed is False when it was already terminal."""

    run: ProjectRun
    changed: bool = True

    ok = True


@dataclass
class RunResolution:
    """Active run for a project and whether this call created it."""

    run: ProjectRun
    created: bool

    ok = True


def _created_at(run: ProjectRun) -> Optional[str]:
    return isoformat(run.created_at) if run.created_at else None


def _metrics_of(run: ProjectRun) -> Dict[str, Any]:
    return dict(run.metrics) if isinstance(run.metrics, dict) else {}


def _telemetry_dump(run: ProjectRun, metrics: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    current = parse_telemetry(metrics.get(TELEMETRY_KEY), created_at=_created_at(run))
    return merge_telemetry(current, patch).model_dump(mode="json", exclude_none=True)


def _guard(step_name: Optional[str], fn: Callable[[], Any], db: Session) -> Any:
    try:
        return fn()
    except Exception as e:
        db.rollback()
        logger.error(f"Orchestrator operation failed (step={step_name}): {e}", exc_info=True)
        return Failure(to_app_error(e, step=step_name))


def resolve_active_run(db: Session, project_id: uuid.UUID) -> Union[RunResolution, Failure]:
    """
    Get or create the run for a project's current input version.

    Args:
        db: Database session
        project_id: Project id

    Returns:
        RunResolution, or Failure(NOT_FOUND) for a missing or deleted project
    """

    def _resolve():
        project = db.get(Project, project_id)
        if project is None or project.deleted:
            return Failure(NotFoundError(f"Project {project_id} not found"))

        run, created = run_store.get_or_create_run_with_flag(db, project.id, project.input_version)
        return RunResolution(run=run, created=created)

    return _guard(None, _resolve, db)


def advance_run(
    db: Session, run_id: uuid.UUID, step_name: str
) -> Union[AdvanceResult, Failure]:
    """
    Advance one step of a run.

    Args:
        db: Database session
        run_id: Run id
        step_name: Step to advance

    Returns:
        AdvanceResult with action 'noop', 'started' or 'resumed', or Failure
        (NOT_FOUND for a missing run, RUN_FAILED for a failed run)
    """

    def _advance():
        run = run_store.get_run(db, run_id)
        if run is None:
            return Failure(NotFoundError(f"Run {run_id} not found", step=step_name))

        if run.status == "failed":
            return Failure(RunFailedError(f"Run {run_id} has failed", step=step_name))

        project = db.get(Project, run.project_id)
        if project is None or project.deleted:
            run_store.set_run_failed(db, run.id, RunFailedError.code, "Project was deleted")
            return Failure(RunFailedError(f"Project of run {run_id} was deleted", step=step_name))

        return claim_step(db, run, step_name)

    return _guard(step_name, _advance, db)


def claim_step(db: Session, run: ProjectRun, step_name: str) -> Union[AdvanceResult, Failure]:
    """
    Claim a step of an already-loaded run.

    The write only lands if ``metrics_version`` still equals the value on
    ``run`` and the run has not ended; a caller holding a stale copy gets
    ``noop`` with the winner's state, or Failure(RUN_FAILED) when the run
    failed in the meantime.
    """
    state = get_step_status(run, step_name)
    if state.status in ("completed", "running") or run.status == "succeeded":
        return AdvanceResult(run=run, step=step_name, action="noop", step_status=state)

    action = "resumed" if state.status == "failed" else "started"
    now = isoformat(utcnow())
    new_state = StepState(
        status="running",
        started_at=now,
        finished_at=None,
        attempts=state.attempts + 1,
        error=None,
    )

    metrics = _metrics_of(run)
    step_map = get_step_status_map(run)
    step_map[step_name] = new_state

    current_telemetry = parse_telemetry(metrics.get(TELEMETRY_KEY), created_at=_created_at(run))
    timeline_patch: Dict[str, Any] = {
        "steps": {
            step_name: {"status": "running", "started_at": now, "attempts": new_state.attempts},
        },
    }
    if current_telemetry.timeline.started_at is None:
        timeline_patch["started_at"] = now
    telemetry = merge_telemetry(
        current_telemetry,
        {
            "timeline": timeline_patch,
            "last_event": {"at": now, "name": f"step_{action}", "step": step_name},
        },
    )

    claimed = run_store.update_run_metrics(
        db,
        run.id,
        {
            STEP_STATUS_KEY: serialize_step_status(step_map),
            TELEMETRY_KEY: telemetry.model_dump(mode="json", exclude_none=True),
        },
        expected_version=run.metrics_version,
        current_metrics=metrics,
        require_active=True,
    )

    if not claimed:
        winner = run_store.get_run(db, run.id)
        if winner is None:
            raise NotFoundError(f"Run {run.id} disappeared while claiming", step=step_name)
        if winner.status == "failed":
            logger.info(f"Run {run.id} failed before step '{step_name}' could be claimed")
            return Failure(RunFailedError(f"Run {run.id} has failed", step=step_name))
        logger.info(f"Lost claim on step '{step_name}' of run {run.id}")
        return AdvanceResult(
            run=winner,
            step=step_name,
            action="noop",
            step_status=get_step_status(winner, step_name),
        )

    if run.status == "queued":
        run_store.set_run_running(db, run.id)

    fresh = run_store.get_run(db, run.id)
    logger.info(f"Step '{step_name}' of run {run.id} {action} (attempt {new_state.attempts})")
    return AdvanceResult(run=fresh, step=step_name, action=action, step_status=new_state)


def _transition_from_running(
    db: Session,
    run_id: uuid.UUID,
    step_name: str,
    build: Callable[[ProjectRun, StepState, str, Optional[int]], tuple],
) -> Union[StepUpdate, Failure]:
    """Apply a running->X step transition, retrying on version conflicts."""
    for attempt in range(1, settings.CLAIM_MAX_RETRIES + 1):
        run = run_store.get_run(db, run_id)
        if run is None:
            return Failure(NotFoundError(f"Run {run_id} not found", step=step_name))

        state = get_step_status(run, step_name)
        if state.status != "running":
            return Failure(
                InvalidTransitionError(
                    f"Step '{step_name}' of run {run_id} is {state.status}, expected running",
                    step=step_name,
                )
            )

        now = utcnow()
        started = parse_datetime(state.started_at)
        duration_ms = int((now - started).total_seconds() * 1000) if started else None
        new_state, telemetry_patch = build(run, state, isoformat(now), duration_ms)

        metrics = _metrics_of(run)
        step_map = get_step_status_map(run)
        step_map[step_name] = new_state

        written = run_store.update_run_metrics(
            db,
            run.id,
            {
                STEP_STATUS_KEY: serialize_step_status(step_map),
                TELEMETRY_KEY: _telemetry_dump(run, metrics, telemetry_patch),
            },
            expected_version=run.metrics_version,
            current_metrics=metrics,
        )
        if written:
            return StepUpdate(run=run_store.get_run(db, run_id), step=step_name, step_status=new_state)

        logger.info(f"Version conflict updating step '{step_name}' of run {run_id} (attempt {attempt})")

    return Failure(
        UnknownAppError(
            f"Could not update step '{step_name}' of run {run_id} after "
            f"{settings.CLAIM_MAX_RETRIES} conflicting writes",
            step=step_name,
        )
    )


def mark_step_completed(
    db: Session,
    run_id: uuid.UUID,
    step_name: str,
    counters: Optional[Dict[str, Any]] = None,
) -> Union[StepUpdate, Failure]:
    """
    Move a running step to completed.

    Args:
        db: Database session
        run_id: Run id
        step_name: Step to complete
        counters: Optional step counters merged into telemetry under the step's namespace

    Returns:
        StepUpdate, or Failure (INVALID_TRANSITION when the step is not running)
    """

    def _build(run, state, now, duration_ms):
        new_state = state.model_copy(update={"status": "completed", "finished_at": now, "error": None})
        patch: Dict[str, Any] = {
            "timeline": {
                "steps": {
                    step_name: {
                        "status": "completed",
                        "finished_at": now,
                        "duration_ms": duration_ms,
                        "attempts": state.attempts,
                    }
                }
            },
            "last_event": {"at": now, "name": "step_completed", "step": step_name},
        }
        if counters:
            patch["counters"] = {step_name: counters}
        return new_state, patch

    result = _guard(step_name, lambda: _transition_from_running(db, run_id, step_name, _build), db)
    if result.ok:
        logger.info(f"Step '{step_name}' of run {run_id} completed")
    return result


def mark_step_failed(
    db: Session,
    run_id: uuid.UUID,
    step_name: str,
    error: AppError,
    request_id: Optional[str] = None,
) -> Union[StepUpdate, Failure]:
    """
    Move a running step to failed, storing a sanitized copy of the error.

    A failed step can be retried through advance_run.
    """
    sanitized = sanitize_app_error(error, request_id=request_id)
    if sanitized.step is None:
        sanitized.step = step_name

    def _build(run, state, now, duration_ms):
        new_state = state.model_copy(update={"status": "failed", "finished_at": now, "error": sanitized})
        patch = {
            "timeline": {
                "steps": {
                    step_name: {
                        "status": "failed",
                        "finished_at": now,
                        "duration_ms": duration_ms,
                        "attempts": state.attempts,
                    }
                }
            },
            "last_event": {"at": now, "name": "step_failed", "step": step_name, "request_id": request_id},
            "debug": {
                "notes": [f"{step_name} attempt {state.attempts} failed: {sanitized.code}"],
                "last_error": sanitized.model_dump(),
            },
        }
        return new_state, patch

    result = _guard(step_name, lambda: _transition_from_running(db, run_id, step_name, _build), db)
    if result.ok:
        logger.warning(f"Step '{step_name}' of run {run_id} failed: {sanitized.code} {sanitized.message}")
    return result


def mark_run_completed(
    db: Session, run_id: uuid.UUID, output: Optional[Dict[str, Any]] = None
) -> Union[RunUpdate, Failure]:
    """
    Mark a run as succeeded with its final output.

    Returns:
        RunUpdate (changed=False when it had already succeeded), or
        Failure(RUN_FAILED) when the run had already failed
    """

    def _complete():
        for _ in range(settings.CLAIM_MAX_RETRIES):
            run = run_store.get_run(db, run_id)
            if run is None:
                return Failure(NotFoundError(f"Run {run_id} not found"))
            if run.status == "failed":
                return Failure(RunFailedError(f"Run {run_id} has already failed"))
            if run.status == "succeeded":
                return RunUpdate(run=run, changed=False)

            now = isoformat(utcnow())
            telemetry = _telemetry_dump(
                run,
                _metrics_of(run),
                {
                    "timeline": {"completed_at": now},
                    "last_event": {"at": now, "name": "run_completed"},
                },
            )
            updated = run_store.set_run_succeeded(
                db, run_id, output=output, metrics_patch={TELEMETRY_KEY: telemetry}
            )
            if updated is not None:
                logger.info(f"Run {run_id} succeeded")
                return RunUpdate(run=updated)

        return Failure(UnknownAppError(f"Could not mark run {run_id} succeeded after conflicting writes"))

    return _guard(None, _complete, db)


def mark_run_failed(db: Session, run_id: uuid.UUID, error: AppError) -> Union[RunUpdate, Failure]:
    """
    Mark a run as failed; no step of it can start afterwards.

    Returns:
        RunUpdate (changed=False when the run was already terminal), or Failure
    """

    def _fail():
        detail = None
        if error.details:
            detail = ", ".join(f"{k}={v}" for k, v in error.details.items())
        updated = run_store.set_run_failed(db, run_id, error.code, error.message, detail=detail)
        if updated is None:
            run = run_store.get_run(db, run_id)
            if run is None:
                return Failure(NotFoundError(f"Run {run_id} not found"))
            return RunUpdate(run=run, changed=False)

        sanitized = sanitize_app_error(error)
        now = isoformat(utcnow())
        patch = {
            "last_event": {"at": now, "name": "run_failed", "step": error.step},
            "debug": {"notes": [f"run failed: {sanitized.code}"], "last_error": sanitized.model_dump()},
        }
        for _ in range(settings.CLAIM_MAX_RETRIES):
            metrics = _metrics_of(updated)
            if run_store.update_run_metrics(
                db,
                run_id,
                {TELEMETRY_KEY: _telemetry_dump(updated, metrics, patch)},
                expected_version=updated.metrics_version,
                current_metrics=metrics,
            ):
                break
            updated = run_store.get_run(db, run_id)
        else:
            logger.warning(f"Could not record failure telemetry for run {run_id}")

        logger.warning(f"Run {run_id} failed: {sanitized.code} {sanitized.message}")
        return RunUpdate(run=run_store.get_run(db, run_id))

    return _guard(None, _fail, db)
