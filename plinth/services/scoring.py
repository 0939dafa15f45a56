"""Evidence-backed scoring for (competitor, criterion) pairs.

The score is a pure, deterministic function of the citation set:

    coverage (0-6) + recency (0-2) + diversity (0-2), clamped to [0, 10]

With zero citations the pair is left unscored; a number is never produced
without evidence behind it.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from plinth.schemas.evidence import Citation, ComputedScore
from plinth.timeutils import age_in_days, isoformat, utcnow

INSUFFICIENT_EVIDENCE = "insufficient_evidence"


def coverage_subscore(evidence_count: int) -> int:
    """Sub-linear step function of the citation count."""
    if evidence_count <= 0:
        return 0
    if evidence_count <= 2:
        return 2
    if evidence_count <= 5:
        return 4
    if evidence_count <= 10:
        return 5
    return 6


def recency_subscore(newest: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Score the age of the newest dated citation; 0 when nothing is dated."""
    if newest is None:
        return 0
    age_days = age_in_days(newest, now)
    if age_days <= 30:
        return 2
    if age_days <= 90:
        return 1
    return 0


def diversity_subscore(type_count: int) -> int:
    """Score the number of distinct source types."""
    if type_count >= 3:
        return 2
    if type_count == 2:
        return 1
    return 0


def score_label(value: Optional[float]) -> str:
    """Human label for a score value."""
    if value is None:
        return "Insufficient"
    if value >= 7.5:
        return "High"
    if value >= 5.0:
        return "Medium"
    if value >= 2.5:
        return "Low"
    return "Insufficient"


def score_competitor_criteria(
    citations: Sequence[Citation], now: Optional[datetime] = None
) -> ComputedScore:
    """
    Compute the evidence-backed score for one competitor/criterion pair.

    Args:
        citations: Citations collected for the pair
        now: Evaluation time (defaults to current UTC time)

    Returns:
        ComputedScore; unscored with reason 'insufficient_evidence' when empty
    """
    if not citations:
        return ComputedScore(
            value=None,
            status="unscored",
            reason=INSUFFICIENT_EVIDENCE,
            evidence_count=0,
            source_types=[],
        )

    now = now or utcnow()
    source_types = sorted({c.source_type for c in citations if c.source_type})
    dates: List[datetime] = sorted(c.date for c in citations if c.date is not None)
    newest = dates[-1] if dates else None
    oldest = dates[0] if dates else None

    total = (
        coverage_subscore(len(citations))
        + recency_subscore(newest, now)
        + diversity_subscore(len(source_types))
    )
    value = round(min(max(float(total), 0.0), 10.0), 1)

    return ComputedScore(
        value=value,
        status="scored",
        evidence_count=len(citations),
        source_types=source_types,
        newest_evidence_at=isoformat(newest) if newest else None,
        oldest_evidence_at=isoformat(oldest) if oldest else None,
    )


def score_pairs(
    competitors: Sequence[Any],
    criteria: Sequence[Dict[str, str]],
    citations_by_pair: Dict[Tuple[Any, str], Sequence[Citation]],
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """
    Score every (competitor, criterion) pair.

    Args:
        competitors: Objects with ``id`` and ``name``
        criteria: Criterion dicts with ``id``
        citations_by_pair: Citations keyed by (competitor id, criterion id)
        now: Evaluation time shared by all pairs

    Returns:
        One flat dict per pair: the ComputedScore fields plus competitor and
        criterion identifiers and the score label
    """
    now = now or utcnow()
    scores: List[Dict[str, Any]] = []
    for competitor in competitors:
        for criterion in criteria:
            score = score_competitor_criteria(citations_by_pair.get((competitor.id, criterion["id"]), []), now)
            entry = score.model_dump()
            entry.update(
                competitor_id=competitor.id,
                competitor_name=competitor.name,
                criterion_id=criterion["id"],
                label=score_label(score.value),
            )
            scores.append(entry)
    return scores
