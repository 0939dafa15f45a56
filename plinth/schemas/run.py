"""Run-related Pydantic schemas."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from plinth.schemas.telemetry import SanitizedError

StepStatusName = Literal["pending", "running", "completed", "failed"]
AdvanceAction = Literal["noop", "started", "resumed"]


class StepState(BaseModel):
    """Progress of a single step within a run."""

    # Older writers stored camelCase keys
    status: StepStatusName = "pending"
    started_at: Optional[str] = Field(default=None, validation_alias=AliasChoices("started_at", "startedAt"))
    finished_at: Optional[str] = Field(default=None, validation_alias=AliasChoices("finished_at", "finishedAt"))
    attempts: int = 0
    error: Optional[SanitizedError] = None


class RunError(BaseModel):
    """User-safe run error."""

    code: str
    user_message: str


class RunOut(BaseModel):
    """Run record as exposed over the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    input_version: int
    status: str
    idempotency_key: str
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class RunResolveResponse(BaseModel):
    """Response after resolving (or creating) the active run."""

    run: RunOut
    created: bool


class AdvanceResponse(BaseModel):
    """Response after asking the orchestrator to advance a step."""

    run_id: UUID
    step: str
    action: AdvanceAction
    step_status: StepState
    executed: bool = False
    error: Optional[RunError] = None


class RunStatusResponse(BaseModel):
    """Polling view of a run."""

    run_id: UUID
    status: str
    step_status: Dict[str, StepState]
    progress_percent: float
    error: Optional[RunError] = None


class ScoreOut(BaseModel):
    """Evidence-backed score for a (competitor, criterion) pair."""

    competitor_id: UUID
    competitor_name: str
    criterion_id: str
    value: Optional[float]
    status: str
    label: str
    reason: Optional[str] = None
    evidence_count: int
    source_types: List[str]
    newest_evidence_at: Optional[str] = None
    oldest_evidence_at: Optional[str] = None


class RunScoresResponse(BaseModel):
    """All scores for a run."""

    run_id: UUID
    scores: List[ScoreOut]


class RunOutputResponse(BaseModel):
    """Final run output."""

    run_id: UUID
    status: str
    output: Optional[Dict[str, Any]] = None
