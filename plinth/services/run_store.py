"""Run state store: persistence operations over project runs.

Every mutation is a single UPDATE scoped to the run's primary key. Metrics
writes bump ``metrics_version`` so callers can make them conditional on the
version they read (compare-and-swap). Terminal status writes only apply
while the run is still non-terminal and bump the version as well, so a
write conditioned on a version read before the run ended never lands.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from plinth.config import settings
from plinth.errors import MAX_CODE_LENGTH, MAX_DETAIL_LENGTH, sanitize_message, truncate
from plinth.models.run import TERMINAL_RUN_STATUSES, ProjectRun
from plinth.timeutils import utcnow

logger = logging.getLogger(__name__)


def compute_idempotency_key(
    project_id: uuid.UUID, input_version: int, salt: Optional[str] = None
) -> str:
    """Deterministic key for a (project, input version) pair."""
    return f"{project_id}:{input_version}:{salt or settings.PIPELINE_VERSION}"


def get_run(db: Session, run_id: uuid.UUID) -> Optional[ProjectRun]:
    """Fetch a run by id, bypassing any stale identity-map copy."""
    return db.get(ProjectRun, run_id, populate_existing=True)


def get_run_by_idempotency_key(db: Session, idempotency_key: str) -> Optional[ProjectRun]:
    """Fetch a run by idempotency key."""
    return (
        db.query(ProjectRun)
        .filter(ProjectRun.idempotency_key == idempotency_key)
        .populate_existing()
        .first()
    )


def get_latest_run_for_project(db: Session, project_id: uuid.UUID) -> Optional[ProjectRun]:
    """Most recently created run for a project."""
    return (
        db.query(ProjectRun)
        .filter(ProjectRun.project_id == project_id)
        .order_by(ProjectRun.created_at.desc())
        .first()
    )


def list_runs_for_project(db: Session, project_id: uuid.UUID, limit: int = 10) -> List[ProjectRun]:
    """Run history for a project, newest first."""
    return (
        db.query(ProjectRun)
        .filter(ProjectRun.project_id == project_id)
        .order_by(ProjectRun.created_at.desc())
        .limit(limit)
        .all()
    )


def list_active_runs(db: Session) -> List[ProjectRun]:
    """Runs that are queued or running."""
    return (
        db.query(ProjectRun)
        .filter(ProjectRun.status.in_(("queued", "running")))
        .order_by(ProjectRun.created_at)
        .all()
    )


def get_or_create_active_run(
    db: Session, project_id: uuid.UUID, input_version: int
) -> ProjectRun:
    """
    Return the run for (project, input version), creating a queued one if absent.

    Safe to call concurrently: when two callers race to insert, the loser's
    insert fails on the unique idempotency key and it returns the winner's row.

    Args:
        db: Database session
        project_id: Project id
        input_version: Version of the project inputs the run is for

    Returns:
        The existing or newly created run
    """
    run, _ = get_or_create_run_with_flag(db, project_id, input_version)
    return run


def get_or_create_run_with_flag(
    db: Session, project_id: uuid.UUID, input_version: int
) -> Tuple[ProjectRun, bool]:
    """Same as get_or_create_active_run, also reporting whether this call inserted the row."""
    key = compute_idempotency_key(project_id, input_version)

    existing = get_run_by_idempotency_key(db, key)
    if existing:
        return existing, False

    run = ProjectRun(
        project_id=project_id,
        input_version=input_version,
        status="queued",
        idempotency_key=key,
        metrics={},
        metrics_version=0,
    )
    db.add(run)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = get_run_by_idempotency_key(db, key)
        if winner is None:
            raise
        logger.info(f"Lost run creation race for {key}, using run {winner.id}")
        return winner, False

    logger.info(f"Created run {run.id} for project {project_id} (input v{input_version})")
    return run, True


def update_run_metrics(
    db: Session,
    run_id: uuid.UUID,
    patch: Dict[str, Any],
    expected_version: Optional[int] = None,
    current_metrics: Optional[Dict[str, Any]] = None,
    require_active: bool = False,
) -> bool:
    """
    Shallow-merge a patch into a run's metrics document.

    Args:
        db: Database session
        run_id: Run id
        patch: Top-level keys to set in the metrics document
        expected_version: When given, only write if metrics_version still equals it
        current_metrics: The metrics read together with expected_version
        require_active: Only write while the run is not succeeded or failed

    Returns:
        True when a row was updated, False when the run is gone, the
        version no longer matches or (with require_active) the run is terminal
    """
    if expected_version is None or current_metrics is None:
        run = get_run(db, run_id)
        if run is None:
            return False
        current_metrics = run.metrics or {}
        if expected_version is None:
            expected_version = run.metrics_version

    merged = dict(current_metrics if isinstance(current_metrics, dict) else {})
    merged.update(patch)

    conditions = [ProjectRun.id == run_id, ProjectRun.metrics_version == expected_version]
    if require_active:
        conditions.append(ProjectRun.status.notin_(TERMINAL_RUN_STATUSES))

    result = db.execute(
        update(ProjectRun)
        .where(*conditions)
        .values(metrics=merged, metrics_version=expected_version + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def set_run_running(db: Session, run_id: uuid.UUID) -> bool:
    """Move a queued run to running; started_at is set only once."""
    now = utcnow()
    result = db.execute(
        update(ProjectRun)
        .where(ProjectRun.id == run_id, ProjectRun.status == "queued")
        .values(status="running", started_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def set_run_succeeded(
    db: Session,
    run_id: uuid.UUID,
    output: Optional[Dict[str, Any]] = None,
    metrics_patch: Optional[Dict[str, Any]] = None,
) -> Optional[ProjectRun]:
    """
    Mark a run as succeeded unless it already reached a terminal status.

    Returns:
        The refreshed run, or None when the run is missing or already terminal
    """
    run = get_run(db, run_id)
    if run is None or run.status in TERMINAL_RUN_STATUSES:
        return None

    values: Dict[str, Any] = {
        "status": "succeeded",
        "finished_at": utcnow(),
        "metrics_version": run.metrics_version + 1,
    }
    if output is not None:
        values["output"] = output
    if metrics_patch:
        metrics = dict(run.metrics or {})
        metrics.update(metrics_patch)
        values["metrics"] = metrics

    result = db.execute(
        update(ProjectRun)
        .where(
            ProjectRun.id == run_id,
            ProjectRun.status.notin_(TERMINAL_RUN_STATUSES),
            ProjectRun.metrics_version == run.metrics_version,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount != 1:
        logger.warning(f"Run {run_id} changed concurrently; not marking succeeded")
        return None
    return get_run(db, run_id)


def set_run_failed(
    db: Session,
    run_id: uuid.UUID,
    code: str,
    message: str,
    detail: Optional[str] = None,
) -> Optional[ProjectRun]:
    """
    Mark a run as failed unless it already reached a terminal status.

    Error fields are sanitized before storage.

    Returns:
        The refreshed run, or None when the run is missing or already terminal
    """
    result = db.execute(
        update(ProjectRun)
        .where(
            ProjectRun.id == run_id,
            ProjectRun.status.notin_(TERMINAL_RUN_STATUSES),
        )
        .values(
            status="failed",
            finished_at=utcnow(),
            metrics_version=ProjectRun.metrics_version + 1,
            error_code=truncate(code, MAX_CODE_LENGTH),
            error_message=sanitize_message(message),
            error_detail=sanitize_message(detail, MAX_DETAIL_LENGTH) if detail else None,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount != 1:
        logger.warning(f"Run {run_id} is missing or already terminal; not marking failed")
        return None
    return get_run(db, run_id)
