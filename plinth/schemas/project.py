"""Project-related Pydantic schemas."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class Criterion(BaseModel):
    """Evaluation criterion."""

    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)


class ProjectCreate(BaseModel):
    """Request to create a project."""

    name: str = Field(..., min_length=1, max_length=200)
    market: Optional[str] = Field(None, max_length=500)
    criteria: List[Criterion] = []


class ProjectInputsUpdate(BaseModel):
    """Edit of project inputs; bumps the input version."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    market: Optional[str] = Field(None, max_length=500)
    criteria: Optional[List[Criterion]] = None


class CompetitorCreate(BaseModel):
    """Request to add a competitor."""

    name: str = Field(..., min_length=1, max_length=200)
    url: Optional[str] = Field(None, max_length=2000)


class CompetitorOut(BaseModel):
    """Competitor as exposed over the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    url: Optional[str] = None


class ProjectOut(BaseModel):
    """Project as exposed over the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    market: Optional[str] = None
    input_version: int
    criteria: List[Criterion] = []
    competitors: List[CompetitorOut] = []
    created_at: Optional[datetime] = None
