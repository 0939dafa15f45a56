"""Base step executor with retry and validation logic."""

import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from plinth.errors import AnalysisFailedError, AppError, NotFoundError, NotReadyError, RunFailedError
from plinth.models.project import Competitor, Project
from plinth.models.run import ProjectRun

logger = logging.getLogger(__name__)

ARTIFACTS_KEY = "artifacts"


class BaseStepExecutor:
    """Base class for all step executors.

    Subclasses implement ``_run`` and optionally ``_validate``. ``_run``
    returns ``{"counters": {...}, "artifact": {...}}``; both keys are optional.
    """

    step_name = ""
    retry_delay = 2.0

    def __init__(self, db_session: Session):
        """Initialize base executor."""
        self.db = db_session

    def execute(self, payload: Dict[str, Any], max_retries: int = 1) -> Dict[str, Any]:
        """
        Execute the step with retries.

        Application errors are not retried here: a failed step is retried
        through the orchestrator instead.

        Args:
            payload: Input payload with 'run_id' and 'project_id'
            max_retries: Maximum number of attempts

        Returns:
            Step result dict

        Raises:
            Exception: If execution fails after max retries
        """
        for attempt in range(max_retries):
            try:
                logger.info(f"Executor {self.__class__.__name__} attempt {attempt + 1}/{max_retries}")

                # Refresh database session to see recently committed data
                self.db.expire_all()

                result = self._run(payload)

                if self._validate(result):
                    logger.info(f"Executor {self.__class__.__name__} succeeded")
                    return result
                logger.warning(f"Executor {self.__class__.__name__} validation failed")

            except AppError:
                raise
            except Exception as e:
                logger.error(f"Executor {self.__class__.__name__} error: {str(e)}")
                if attempt == max_retries - 1:
                    raise

                delay = self.retry_delay * (attempt + 1)
                logger.warning(f"Executor {self.__class__.__name__} waiting {delay}s before retry {attempt + 2}...")
                time.sleep(delay)

        raise AnalysisFailedError(
            f"Executor {self.__class__.__name__} produced invalid output after {max_retries} attempts",
            step=self.step_name,
        )

    def _run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run the step logic (to be implemented by subclasses).

        Args:
            payload: Input payload

        Returns:
            Output dict
        """
        raise NotImplementedError

    def _validate(self, result: Dict[str, Any]) -> bool:
        """
        Validate the step output (to be overridden by subclasses).

        Args:
            result: Step output

        Returns:
            True if valid, False otherwise
        """
        return isinstance(result, dict)

    # Shared loaders

    def _load_run(self, payload: Dict[str, Any]) -> ProjectRun:
        run = self.db.get(ProjectRun, uuid.UUID(str(payload["run_id"])))
        if run is None:
            raise NotFoundError(f"Run {payload['run_id']} not found", step=self.step_name)
        return run

    def _load_project(self, run: ProjectRun) -> Project:
        project = self.db.get(Project, run.project_id)
        if project is None or project.deleted:
            raise RunFailedError(f"Project {run.project_id} was deleted", step=self.step_name)
        return project

    def _load_competitors(self, project: Project) -> List[Competitor]:
        competitors = (
            self.db.query(Competitor)
            .filter(Competitor.project_id == project.id)
            .order_by(Competitor.created_at)
            .all()
        )
        if not competitors:
            raise NotReadyError(f"Project {project.id} has no competitors", step=self.step_name)
        return competitors

    def _criteria(self, project: Project) -> List[Dict[str, str]]:
        criteria = [
            {"id": str(c.get("id")), "name": str(c.get("name") or c.get("id"))}
            for c in (project.criteria or [])
            if isinstance(c, dict) and c.get("id")
        ]
        if not criteria:
            raise NotReadyError(f"Project {project.id} has no evaluation criteria", step=self.step_name)
        return criteria

    def _artifact(self, run: ProjectRun, step_name: str) -> Optional[Dict[str, Any]]:
        artifacts = (run.metrics or {}).get(ARTIFACTS_KEY)
        if not isinstance(artifacts, dict):
            return None
        artifact = artifacts.get(step_name)
        return artifact if isinstance(artifact, dict) else None
