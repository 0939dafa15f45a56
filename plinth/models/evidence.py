"""Evidence source model."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint, Uuid

from plinth.database import Base
from plinth.timeutils import utcnow


class EvidenceSource(Base):
    """A normalized citation collected for a (competitor, criterion) pair during a run."""

    __tablename__ = "evidence_sources"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Uuid, ForeignKey("project_runs.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    competitor_id = Column(Uuid, ForeignKey("competitors.id", ondelete="CASCADE"), nullable=False)
    criterion_id = Column(Text, nullable=False)
    url = Column(Text, nullable=False)
    domain = Column(Text)
    source_type = Column(Text, nullable=False, default="other")
    title = Column(Text)
    published_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("run_id", "competitor_id", "criterion_id", "url"),
        Index("idx_evidence_sources_run_id", "run_id"),
        Index("idx_evidence_sources_project_id", "project_id"),
    )
