"""SQLAlchemy ORM models."""

from plinth.models.evidence import EvidenceSource
from plinth.models.project import Competitor, Project
from plinth.models.run import ProjectRun

__all__ = [
    "Project",
    "Competitor",
    "ProjectRun",
    "EvidenceSource",
]
