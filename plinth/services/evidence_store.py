"""Persistence helpers for evidence sources collected during a run."""

import logging
import uuid
from collections import defaultdict
from typing import Dict, List, Sequence, Tuple

from sqlalchemy.orm import Session

from plinth.models.evidence import EvidenceSource
from plinth.schemas.evidence import Citation

logger = logging.getLogger(__name__)

PairKey = Tuple[uuid.UUID, str]


def save_citations(
    db: Session,
    run_id: uuid.UUID,
    project_id: uuid.UUID,
    competitor_id: uuid.UUID,
    criterion_id: str,
    citations: Sequence[Citation],
) -> int:
    """
    Persist citations for one (competitor, criterion) pair, skipping URLs already stored.

    Returns:
        Number of new rows
    """
    existing = {
        url
        for (url,) in db.query(EvidenceSource.url).filter(
            EvidenceSource.run_id == run_id,
            EvidenceSource.competitor_id == competitor_id,
            EvidenceSource.criterion_id == criterion_id,
        )
    }

    saved = 0
    for citation in citations:
        if citation.url in existing:
            continue
        existing.add(citation.url)
        db.add(
            EvidenceSource(
                run_id=run_id,
                project_id=project_id,
                competitor_id=competitor_id,
                criterion_id=criterion_id,
                url=citation.url,
                domain=citation.domain,
                source_type=citation.source_type,
                title=citation.title,
                published_at=citation.date,
            )
        )
        saved += 1

    db.commit()
    return saved


def _to_citation(source: EvidenceSource) -> Citation:
    return Citation(
        url=source.url,
        domain=source.domain,
        source_type=source.source_type or "other",
        date=source.published_at,
        title=source.title,
    )


def load_run_citations(db: Session, run_id: uuid.UUID) -> List[Citation]:
    """Every citation of a run."""
    sources = (
        db.query(EvidenceSource)
        .filter(EvidenceSource.run_id == run_id)
        .order_by(EvidenceSource.id)
        .all()
    )
    return [_to_citation(s) for s in sources]


def load_citations_by_pair(db: Session, run_id: uuid.UUID) -> Dict[PairKey, List[Citation]]:
    """Citations of a run grouped by (competitor id, criterion id)."""
    grouped: Dict[PairKey, List[Citation]] = defaultdict(list)
    sources = (
        db.query(EvidenceSource)
        .filter(EvidenceSource.run_id == run_id)
        .order_by(EvidenceSource.id)
        .all()
    )
    for source in sources:
        grouped[(source.competitor_id, source.criterion_id)].append(_to_citation(source))
    return dict(grouped)


def citation_digest(citations: Sequence[Citation], limit: int = 60) -> str:
    """Compact one-line-per-citation listing for generator prompts."""
    lines = []
    for citation in list(citations)[:limit]:
        date = citation.date.date().isoformat() if citation.date else "undated"
        title = f" {citation.title[:120]}" if citation.title else ""
        lines.append(f"- [{citation.source_type}] {citation.url} ({date}){title}")
    if len(citations) > limit:
        lines.append(f"- ... {len(citations) - limit} more")
    return "\n".join(lines)
