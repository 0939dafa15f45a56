"""Project routes: projects, competitors, run resolution and coverage."""

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from plinth.database import get_db
from plinth.errors import user_message_for
from plinth.models.project import Competitor, Project
from plinth.routes.runs import raise_for_failure
from plinth.schemas.evidence import CoverageResponse
from plinth.schemas.project import (
    CompetitorCreate,
    CompetitorOut,
    ProjectCreate,
    ProjectInputsUpdate,
    ProjectOut,
)
from plinth.schemas.run import RunOut, RunResolveResponse
from plinth.services import run_store
from plinth.services.coverage import evaluate_coverage
from plinth.services.evidence_store import load_run_citations
from plinth.services.orchestrator import resolve_active_run

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


def _get_project(db: Session, project_id: uuid.UUID) -> Project:
    project = db.get(Project, project_id)
    if not project or project.deleted:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "user_message": user_message_for("NOT_FOUND")})
    return project


@router.post("", response_model=ProjectOut)
def create_project(
    data: ProjectCreate,
    db: Session = Depends(get_db),
):
    """Create a new project."""
    project = Project(
        name=data.name,
        market=data.market,
        criteria=[c.model_dump() for c in data.criteria],
        input_version=1,
    )
    db.add(project)
    db.commit()
    db.refresh(project)

    logger.info(f"Created project {project.id}")
    return project


@router.get("/{project_id}", response_model=ProjectOut)
def get_project(
    project_id: uuid.UUID,
    db: Session = Depends(get_db),
):
    """Get a project with its competitors."""
    return _get_project(db, project_id)


@router.delete("/{project_id}")
def delete_project(
    project_id: uuid.UUID,
    db: Session = Depends(get_db),
):
    """Soft-delete a project; its active run fails on the next advance."""
    project = _get_project(db, project_id)
    project.deleted = True
    db.commit()

    logger.info(f"Deleted project {project_id}")
    return {"project_id": str(project_id), "deleted": True}


@router.post("/{project_id}/competitors", response_model=CompetitorOut)
def add_competitor(
    project_id: uuid.UUID,
    data: CompetitorCreate,
    db: Session = Depends(get_db),
):
    """Add a competitor; this changes the project inputs."""
    project = _get_project(db, project_id)
    competitor = Competitor(project_id=project.id, name=data.name, url=data.url)
    db.add(competitor)
    project.input_version = project.input_version + 1
    db.commit()
    db.refresh(competitor)

    logger.info(f"Added competitor {competitor.id} to project {project_id} (input v{project.input_version})")
    return competitor


@router.post("/{project_id}/inputs", response_model=ProjectOut)
def update_inputs(
    project_id: uuid.UUID,
    data: ProjectInputsUpdate,
    db: Session = Depends(get_db),
):
    """Edit project inputs and bump the input version, so the next run starts fresh."""
    project = _get_project(db, project_id)
    if data.name is not None:
        project.name = data.name
    if data.market is not None:
        project.market = data.market
    if data.criteria is not None:
        project.criteria = [c.model_dump() for c in data.criteria]
    project.input_version = project.input_version + 1
    db.commit()
    db.refresh(project)

    logger.info(f"Project {project_id} inputs updated (input v{project.input_version})")
    return project


@router.post("/{project_id}/runs", response_model=RunResolveResponse)
def resolve_run(
    project_id: uuid.UUID,
    db: Session = Depends(get_db),
):
    """Get or create the run for the project's current inputs."""
    result = resolve_active_run(db, project_id)
    if not result.ok:
        raise_for_failure(result)
    return RunResolveResponse(run=RunOut.model_validate(result.run), created=result.created)


@router.get("/{project_id}/runs", response_model=List[RunOut])
def list_runs(
    project_id: uuid.UUID,
    limit: int = 10,
    db: Session = Depends(get_db),
):
    """Run history for a project, newest first."""
    _get_project(db, project_id)
    return run_store.list_runs_for_project(db, project_id, limit=max(1, min(limit, 100)))


@router.get("/{project_id}/coverage", response_model=CoverageResponse)
def get_coverage(
    project_id: uuid.UUID,
    db: Session = Depends(get_db),
):
    """Coverage verdict for the evidence of the project's latest run."""
    project = _get_project(db, project_id)
    run = run_store.get_latest_run_for_project(db, project.id)
    citations = load_run_citations(db, run.id) if run else []
    domains = [c.url for c in project.competitors if c.url]

    return CoverageResponse(
        project_id=str(project.id),
        run_id=str(run.id) if run else None,
        verdict=evaluate_coverage(citations, competitor_domains=domains),
    )
