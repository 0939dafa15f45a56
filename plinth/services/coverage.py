"""Coverage sufficiency gate for an evidence corpus."""

import statistics
from datetime import datetime
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urlparse

from plinth.schemas.evidence import Citation, CoverageThreshold, CoverageVerdict
from plinth.timeutils import age_in_days, isoformat, utcnow

NO_EVIDENCE_REASON = "No evidence collected yet"


def normalize_domain(value: Optional[str]) -> str:
    """Lower-case a host or URL and strip any 'www.' prefix."""
    if not value:
        return ""
    text = value.strip().lower()
    if "://" in text:
        text = urlparse(text).hostname or ""
    text = text.split("/", 1)[0].split(":", 1)[0]
    if text.startswith("www."):
        text = text[4:]
    return text


def citation_domain(citation: Citation) -> str:
    """Domain of a citation, derived from its URL when not set explicitly."""
    return normalize_domain(citation.domain or citation.url)


def is_first_party(citation: Citation, competitor_domains: Iterable[str]) -> bool:
    """True when the citation comes from a competitor's own domain or a subdomain of it."""
    domain = citation_domain(citation)
    if not domain:
        return False
    for competitor_domain in competitor_domains:
        normalized = normalize_domain(competitor_domain)
        if normalized and (domain == normalized or domain.endswith(f".{normalized}")):
            return True
    return False


def evaluate_coverage(
    citations: Sequence[Citation],
    threshold: Optional[CoverageThreshold] = None,
    competitor_domains: Sequence[str] = (),
    now: Optional[datetime] = None,
) -> CoverageVerdict:
    """
    Decide whether an evidence corpus is sufficient to proceed to generation.

    All four checks must hold: total sources, distinct source types,
    first-party ratio and median citation age. When no citation carries a
    date the age check is skipped.

    Args:
        citations: Every citation collected for the project
        threshold: Policy to evaluate against (defaults to configured policy)
        competitor_domains: Official competitor domains, defining first-party
        now: Evaluation time (defaults to current UTC time)

    Returns:
        CoverageVerdict with one human-readable reason per failed check
    """
    threshold = threshold or CoverageThreshold.from_settings()
    now = now or utcnow()

    total = len(citations)
    types_present = sorted({c.source_type for c in citations if c.source_type})
    first_party_count = sum(1 for c in citations if is_first_party(c, competitor_domains))
    first_party_ratio = first_party_count / total if total else 0.0

    dates: List[datetime] = sorted(c.date for c in citations if c.date is not None)
    median_age = statistics.median(age_in_days(d, now) for d in dates) if dates else None

    reasons: List[str] = []
    if total == 0:
        reasons.append(NO_EVIDENCE_REASON)
    if total < threshold.min_total_sources:
        reasons.append(f"Need {threshold.min_total_sources} sources, have {total}")
    if len(types_present) < threshold.min_evidence_types:
        reasons.append(
            f"Need {threshold.min_evidence_types} evidence types, have {len(types_present)}"
        )
    if first_party_ratio < threshold.min_first_party_ratio:
        reasons.append(
            f"Need {threshold.min_first_party_ratio * 100:.0f}% first-party sources, "
            f"have {first_party_ratio * 100:.0f}%"
        )
    if median_age is not None and median_age > threshold.max_median_age_days:
        reasons.append(
            f"Median evidence age {median_age:.0f} days exceeds maximum "
            f"{threshold.max_median_age_days:.0f} days"
        )

    return CoverageVerdict(
        is_sufficient=not reasons,
        reasons=reasons,
        total_sources=total,
        type_count=len(types_present),
        types_present=types_present,
        first_party_count=first_party_count,
        first_party_ratio=first_party_ratio,
        median_age_days=round(median_age, 1) if median_age is not None else None,
        newest_at=isoformat(dates[-1]) if dates else None,
        oldest_at=isoformat(dates[0]) if dates else None,
        threshold=threshold,
    )
