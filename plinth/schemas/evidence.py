"""Evidence, scoring and coverage schemas."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from plinth.config import settings
from plinth.timeutils import parse_datetime


class Citation(BaseModel):
    """A normalized citation."""

    url: str
    domain: Optional[str] = None
    source_type: str = "other"
    date: Optional[datetime] = None
    title: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value):
        # Unparseable dates are dropped rather than rejected; dates are optional upstream
        return parse_datetime(value)


class ComputedScore(BaseModel):
    """Evidence-backed quality score; value is None iff status is 'unscored'."""

    value: Optional[float]
    status: Literal["scored", "unscored"]
    reason: Optional[str] = None
    evidence_count: int
    source_types: List[str] = []
    newest_evidence_at: Optional[str] = None
    oldest_evidence_at: Optional[str] = None


class CoverageThreshold(BaseModel):
    """Minimum evidence breadth and freshness required before generation."""

    min_total_sources: int = Field(default=5, ge=0)
    min_evidence_types: int = Field(default=3, ge=0)
    min_first_party_ratio: float = Field(default=0.2, ge=0.0, le=1.0)
    max_median_age_days: float = Field(default=180.0, ge=0.0)

    @classmethod
    def from_settings(cls) -> "CoverageThreshold":
        """Threshold configured for this environment."""
        return cls(
            min_total_sources=settings.COVERAGE_MIN_TOTAL_SOURCES,
            min_evidence_types=settings.COVERAGE_MIN_EVIDENCE_TYPES,
            min_first_party_ratio=settings.COVERAGE_MIN_FIRST_PARTY_RATIO,
            max_median_age_days=settings.COVERAGE_MAX_MEDIAN_AGE_DAYS,
        )


class CoverageVerdict(BaseModel):
    """Sufficiency verdict for an evidence corpus."""

    is_sufficient: bool
    reasons: List[str]
    total_sources: int
    type_count: int
    types_present: List[str]
    first_party_count: int
    first_party_ratio: float
    median_age_days: Optional[float] = None
    newest_at: Optional[str] = None
    oldest_at: Optional[str] = None
    threshold: CoverageThreshold


class CoverageResponse(BaseModel):
    """Coverage API response."""

    project_id: str
    run_id: Optional[str] = None
    verdict: CoverageVerdict
