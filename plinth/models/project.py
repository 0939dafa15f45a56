"""Project and competitor models."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from plinth.database import Base, JSONDocument
from plinth.timeutils import utcnow


class Project(Base):
    """A competitive analysis project."""

    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    market = Column(Text)
    # Bumped every time the user edits the project inputs
    input_version = Column(Integer, nullable=False, default=1)
    criteria = Column(JSONDocument, nullable=False, default=list)  # [{"id": ..., "name": ...}]
    deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    competitors = relationship(
        "Competitor",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Competitor.created_at",
    )


class Competitor(Base):
    """A competitor tracked by a project."""

    __tablename__ = "competitors"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    url = Column(Text)  # Official site; its domain marks first-party evidence
    created_at = Column(DateTime(timezone=True), default=utcnow)

    project = relationship("Project", back_populates="competitors")

    __table_args__ = (Index("idx_competitors_project_id", "project_id"),)
