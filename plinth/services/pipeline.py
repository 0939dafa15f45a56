"""Pipeline runner: advances a step, executes it and records the outcome."""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from plinth.agents.analysis import AnalysisExecutor
from plinth.agents.base import ARTIFACTS_KEY, BaseStepExecutor
from plinth.agents.evidence import EvidenceExecutor
from plinth.agents.scoring import ScoringExecutor
from plinth.agents.synthesis import SynthesisExecutor
from plinth.config import settings
from plinth.errors import AppError, Failure, RunFailedError, UnknownAppError, to_app_error
from plinth.models.run import ProjectRun
from plinth.schemas.run import AdvanceAction, StepState
from plinth.services import run_store
from plinth.services.evidence_collector import EvidenceCollector
from plinth.services.llm_client import LLMClient
from plinth.services.orchestrator import (
    advance_run,
    mark_run_completed,
    mark_run_failed,
    mark_step_completed,
    mark_step_failed,
)
from plinth.services.step_status import get_step_status_map

logger = logging.getLogger(__name__)

STEP_ORDER = ("evidence", "analysis", "scoring", "synthesis")


@dataclass
class StepRunResult:
    """Outcome of run_step. error is set when the executor failed."""

    run: ProjectRun
    step: str
    action: AdvanceAction
    step_status: StepState
    executed: bool = False
    error: Optional[AppError] = None

    ok = True


def build_executors(
    db: Session,
    collector: Optional[EvidenceCollector] = None,
    generator: Optional[LLMClient] = None,
) -> Dict[str, BaseStepExecutor]:
    """Executor registry for the standard pipeline."""
    collector = collector or EvidenceCollector()
    generator = generator or LLMClient()
    return {
        "evidence": EvidenceExecutor(db, collector),
        "analysis": AnalysisExecutor(db, generator),
        "scoring": ScoringExecutor(db),
        "synthesis": SynthesisExecutor(db, generator),
    }


def _store_artifact(db: Session, run_id: uuid.UUID, step_name: str, artifact: Dict[str, Any]) -> bool:
    for _ in range(settings.CLAIM_MAX_RETRIES):
        run = run_store.get_run(db, run_id)
        if run is None:
            return False
        metrics = dict(run.metrics or {})
        artifacts = dict(metrics.get(ARTIFACTS_KEY) or {})
        artifacts[step_name] = artifact
        if run_store.update_run_metrics(
            db,
            run_id,
            {ARTIFACTS_KEY: artifacts},
            expected_version=run.metrics_version,
            current_metrics=metrics,
        ):
            return True
    return False


def _all_steps_completed(run: ProjectRun) -> bool:
    step_map = get_step_status_map(run)
    return all(step_map.get(step) is not None and step_map[step].status == "completed" for step in STEP_ORDER)


def _final_output(run: ProjectRun) -> Dict[str, Any]:
    artifacts = (run.metrics or {}).get(ARTIFACTS_KEY) or {}
    return {
        "analysis": artifacts.get("analysis"),
        "bets": (artifacts.get("synthesis") or {}).get("bets", []),
    }


def _fail_step(
    db: Session, run_id: uuid.UUID, step_name: str, error: AppError, action: AdvanceAction
) -> Union[StepRunResult, Failure]:
    failed = mark_step_failed(db, run_id, step_name, error)
    if not failed.ok:
        return failed
    if isinstance(error, RunFailedError):
        mark_run_failed(db, run_id, error)
    return StepRunResult(
        run=failed.run,
        step=step_name,
        action=action,
        step_status=failed.step_status,
        executed=True,
        error=error,
    )


def run_step(
    db: Session,
    run_id: uuid.UUID,
    step_name: str,
    executors: Dict[str, BaseStepExecutor],
) -> Union[StepRunResult, Failure]:
    """
    Advance a step and, when this caller claimed it, execute it.

    Args:
        db: Database session
        run_id: Run id
        step_name: Step to run
        executors: Executor registry keyed by step name

    Returns:
        StepRunResult (with error set when the executor failed), or the
        orchestrator's Failure when the step could not be advanced
    """
    advanced = advance_run(db, run_id, step_name)
    if not advanced.ok:
        return advanced
    if advanced.action == "noop":
        return StepRunResult(
            run=advanced.run,
            step=step_name,
            action="noop",
            step_status=advanced.step_status,
        )

    executor = executors.get(step_name)
    if executor is None:
        error = UnknownAppError(f"No executor registered for step '{step_name}'", step=step_name)
        return _fail_step(db, run_id, step_name, error, advanced.action)

    try:
        output = executor.execute({"run_id": str(run_id), "project_id": str(advanced.run.project_id)})
    except Exception as e:
        db.rollback()
        error = to_app_error(e, step=step_name)
        logger.error(f"Step '{step_name}' of run {run_id} failed: {error.code} {error.message}", exc_info=True)
        return _fail_step(db, run_id, step_name, error, advanced.action)

    artifact = output.get("artifact")
    if artifact is not None and not _store_artifact(db, run_id, step_name, artifact):
        error = UnknownAppError(f"Could not store {step_name} artifact for run {run_id}", step=step_name)
        return _fail_step(db, run_id, step_name, error, advanced.action)

    completed = mark_step_completed(db, run_id, step_name, counters=output.get("counters"))
    if not completed.ok:
        return completed

    run = completed.run
    if _all_steps_completed(run):
        finished = mark_run_completed(db, run_id, output=_final_output(run))
        if finished.ok:
            run = finished.run

    return StepRunResult(
        run=run,
        step=step_name,
        action=advanced.action,
        step_status=completed.step_status,
        executed=True,
    )


def run_pipeline(
    db: Session,
    run_id: uuid.UUID,
    executors: Dict[str, BaseStepExecutor],
) -> List[Union[StepRunResult, Failure]]:
    """
    Walk every step in order, stopping at the first step that failed or is
    still running elsewhere.

    Returns:
        One result per step visited
    """
    results: List[Union[StepRunResult, Failure]] = []
    for step_name in STEP_ORDER:
        result = run_step(db, run_id, step_name, executors)
        results.append(result)
        if not result.ok or result.error is not None:
            break
        if result.step_status.status != "completed":
            logger.info(f"Step '{step_name}' of run {run_id} is {result.step_status.status}, stopping")
            break
    return results
