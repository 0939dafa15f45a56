"""Run routes: step advancement, status polling and scores."""

import logging
import uuid
from typing import Dict, List, NoReturn

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from plinth.agents.base import BaseStepExecutor
from plinth.database import get_db
from plinth.errors import Failure, user_message_for
from plinth.models.project import Competitor, Project
from plinth.schemas.run import (
    AdvanceResponse,
    RunError,
    RunOutputResponse,
    RunScoresResponse,
    RunStatusResponse,
    ScoreOut,
)
from plinth.services import run_store
from plinth.services.evidence_store import load_citations_by_pair
from plinth.services.pipeline import STEP_ORDER, build_executors, run_pipeline, run_step
from plinth.services.scoring import score_pairs
from plinth.services.step_status import get_step_status_map

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["runs"])

STATUS_CODES = {
    "NOT_FOUND": 404,
    "RUN_FAILED": 409,
    "INVALID_TRANSITION": 409,
    "NOT_READY": 422,
    "EXTERNAL_FETCH": 502,
}


def raise_for_failure(failure: Failure) -> NoReturn:
    """Translate a typed Failure into an HTTP error with a user-safe body."""
    error = failure.error
    raise HTTPException(status_code=STATUS_CODES.get(error.code, 500), detail=error.to_dict())


def get_executors(db: Session = Depends(get_db)) -> Dict[str, BaseStepExecutor]:
    """Executor registry bound to the request's session."""
    return build_executors(db)


def _advance_response(run_id: uuid.UUID, result) -> AdvanceResponse:
    if not result.ok:
        raise_for_failure(result)
    error = None
    if result.error is not None:
        error = RunError(code=result.error.code, user_message=result.error.user_message)
    return AdvanceResponse(
        run_id=run_id,
        step=result.step,
        action=result.action,
        step_status=result.step_status,
        executed=result.executed,
        error=error,
    )


@router.post("/{run_id}/steps/{step}/advance", response_model=AdvanceResponse)
def advance_step(
    run_id: uuid.UUID,
    step: str,
    db: Session = Depends(get_db),
    executors: Dict[str, BaseStepExecutor] = Depends(get_executors),
):
    """Advance a step; when this request claims it, the step executes synchronously."""
    if step not in STEP_ORDER:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "user_message": f"Unknown step: {step}"})

    result = run_step(db, run_id, step, executors)
    return _advance_response(run_id, result)


@router.post("/{run_id}/pipeline", response_model=List[AdvanceResponse])
def run_all_steps(
    run_id: uuid.UUID,
    db: Session = Depends(get_db),
    executors: Dict[str, BaseStepExecutor] = Depends(get_executors),
):
    """Advance every step in order until one fails or is still running elsewhere."""
    results = run_pipeline(db, run_id, executors)
    return [_advance_response(run_id, r) for r in results]


@router.get("/{run_id}/status", response_model=RunStatusResponse)
def get_run_status(
    run_id: uuid.UUID,
    db: Session = Depends(get_db),
):
    """Get run status and per-step progress."""
    run = run_store.get_run(db, run_id)
    if not run:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "user_message": user_message_for("NOT_FOUND")})

    step_map = get_step_status_map(run)
    completed = sum(1 for step in STEP_ORDER if step in step_map and step_map[step].status == "completed")
    progress_percent = round(completed / len(STEP_ORDER) * 100, 1)

    error = None
    if run.status == "failed":
        code = run.error_code or "UNKNOWN"
        error = RunError(code=code, user_message=user_message_for(code))

    return RunStatusResponse(
        run_id=run.id,
        status=run.status,
        step_status={step: step_map[step] for step in STEP_ORDER if step in step_map},
        progress_percent=progress_percent,
        error=error,
    )


@router.get("/{run_id}/scores", response_model=RunScoresResponse)
def get_run_scores(
    run_id: uuid.UUID,
    db: Session = Depends(get_db),
):
    """Evidence-backed score for every (competitor, criterion) pair of a run."""
    run = run_store.get_run(db, run_id)
    if not run:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "user_message": user_message_for("NOT_FOUND")})

    project = db.get(Project, run.project_id)
    competitors = (
        db.query(Competitor)
        .filter(Competitor.project_id == run.project_id)
        .order_by(Competitor.created_at)
        .all()
    )
    criteria = [c for c in (project.criteria or []) if isinstance(c, dict) and c.get("id")] if project else []

    scores = score_pairs(competitors, criteria, load_citations_by_pair(db, run.id))
    return RunScoresResponse(run_id=run.id, scores=[ScoreOut(**s) for s in scores])


@router.get("/{run_id}/output", response_model=RunOutputResponse)
def get_run_output(
    run_id: uuid.UUID,
    db: Session = Depends(get_db),
):
    """Final run output (analysis and ranked bets) once the run succeeded."""
    run = run_store.get_run(db, run_id)
    if not run:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "user_message": user_message_for("NOT_FOUND")})

    return RunOutputResponse(run_id=run.id, status=run.status, output=run.output)
