"""Project run model."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Text, Uuid

from plinth.database import Base, JSONDocument
from plinth.timeutils import utcnow

RUN_STATUSES = ("queued", "running", "succeeded", "failed")
TERMINAL_RUN_STATUSES = ("succeeded", "failed")


class ProjectRun(Base):
    """One execution attempt of the pipeline for a (project, input version) pair."""

    __tablename__ = "project_runs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    input_version = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, default="queued")  # 'queued', 'running', 'succeeded', 'failed'
    idempotency_key = Column(Text, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
    error_code = Column(Text)
    error_message = Column(Text)
    error_detail = Column(Text)
    metrics = Column(JSONDocument, nullable=False, default=dict)  # step_status, telemetry, counters
    output = Column(JSONDocument)
    # Compare value for conditional metrics writes
    metrics_version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_project_runs_project_id", "project_id"),
        Index("idx_project_runs_status", "status"),
    )
