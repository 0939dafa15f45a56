"""Citation normalization.

Evidence collectors return loosely shaped records (plain URL strings,
search API results, legacy stored citations). These helpers turn them into
``Citation`` models with a canonical URL, a source type and an optional date.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse, urlunparse

from plinth.schemas.evidence import Citation
from plinth.services.coverage import normalize_domain
from plinth.timeutils import parse_datetime

logger = logging.getLogger(__name__)

SOURCE_TYPES = (
    "pricing",
    "docs",
    "reviews",
    "jobs",
    "changelog",
    "blog",
    "community",
    "security",
    "other",
)

TYPE_ALIASES = {
    "pricing_page": "pricing",
    "plans": "pricing",
    "documentation": "docs",
    "doc": "docs",
    "review": "reviews",
    "job": "jobs",
    "careers": "jobs",
    "changelogs": "changelog",
    "release_notes": "changelog",
    "status": "other",
    "marketing_site": "blog",
    "marketing": "blog",
    "social": "blog",
    "news": "blog",
    "forum": "community",
}

# First match wins; order matters
PATH_SIGNALS = (
    ("pricing", ("/pricing", "/plans", "/billing", "/price")),
    ("docs", ("/docs", "/documentation", "/api", "/guide", "/help")),
    ("changelog", ("/changelog", "/release-notes", "/releases", "/updates", "/whats-new")),
    ("security", ("/security", "/trust", "/compliance", "/privacy")),
    ("jobs", ("/careers", "/jobs")),
    ("community", ("/community", "/forum", "/discuss")),
    ("blog", ("/blog", "/news", "/press")),
)

HOST_SIGNALS = (
    ("reviews", ("g2.com", "capterra.com", "trustpilot.com", "getapp.com", "trustradius.com")),
    ("jobs", ("greenhouse.io", "lever.co", "linkedin.com/jobs", "workable.com")),
    ("community", ("reddit.com", "news.ycombinator.com", "discord.com", "stackoverflow.com")),
    ("docs", ("readthedocs.io", "gitbook.io")),
)

URL_FIELDS = ("url", "href", "link", "source_url", "citation")
TYPE_FIELDS = ("source_type", "sourceType", "type", "evidence_type", "evidenceType")
DATE_FIELDS = (
    "date",
    "published_at",
    "publishedAt",
    "published_date",
    "publishedDate",
    "source_date",
    "retrieved_at",
    "retrievedAt",
)
TITLE_FIELDS = ("title", "page_title", "pageTitle", "name")

_OTHER_SCHEME = re.compile(r"^[a-z][a-z0-9+.\-]*:(?!\d)", re.IGNORECASE)


def canonicalize_url(raw: str) -> Optional[str]:
    """
    Canonicalize an http(s) URL.

    Lower-cases the scheme and host, drops the fragment and any trailing
    slash on the path. Returns None for non-http(s) or host-less URLs.
    """
    text = (raw or "").strip()
    if not text or any(ch.isspace() for ch in text):
        return None
    if "://" not in text:
        # mailto:, javascript: and similar; 'host:port' is still accepted
        if _OTHER_SCHEME.match(text):
            return None
        text = f"https://{text}"

    parsed = urlparse(text)
    if parsed.scheme.lower() not in ("http", "https") or not parsed.hostname or "." not in parsed.hostname:
        return None

    path = parsed.path.rstrip("/")
    netloc = parsed.netloc.lower()
    return urlunparse((parsed.scheme.lower(), netloc, path, parsed.params, parsed.query, ""))


def normalize_source_type(value: Any) -> Optional[str]:
    """Map a free-form type label onto a known source type."""
    if not value or not isinstance(value, str):
        return None

    label = value.strip().lower().replace("-", "_").replace(" ", "_")
    if label in SOURCE_TYPES:
        return label
    if label in TYPE_ALIASES:
        return TYPE_ALIASES[label]

    for source_type in SOURCE_TYPES:
        if source_type.rstrip("s") in label:
            return source_type
    return None


def detect_source_type(url: str, title: str = "") -> str:
    """Classify a citation by URL path and host signals."""
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    path = parsed.path.lower()
    host_and_path = f"{host}{path}"

    for source_type, hosts in HOST_SIGNALS:
        if any(h in host_and_path for h in hosts):
            return source_type

    for source_type, signals in PATH_SIGNALS:
        if any(signal in path for signal in signals):
            return source_type

    lowered_title = title.lower()
    if "pricing" in lowered_title:
        return "pricing"
    if "review" in lowered_title:
        return "reviews"
    if "changelog" in lowered_title or "release notes" in lowered_title:
        return "changelog"

    return "other"


def _first(record: Dict[str, Any], fields: Iterable[str]) -> Any:
    for field in fields:
        value = record.get(field)
        if value:
            return value
    return None


def normalize_citation(raw: Any) -> Optional[Citation]:
    """
    Normalize a single raw citation.

    Args:
        raw: URL string or mapping with url/type/date fields in any known spelling

    Returns:
        Citation, or None when no valid http(s) URL can be found
    """
    if isinstance(raw, str):
        url = canonicalize_url(raw)
        if not url:
            return None
        return Citation(url=url, domain=normalize_domain(url), source_type=detect_source_type(url))

    if not isinstance(raw, dict):
        return None

    url_raw = _first(raw, URL_FIELDS)
    if not isinstance(url_raw, str):
        return None
    url = canonicalize_url(url_raw)
    if not url:
        return None

    title = _first(raw, TITLE_FIELDS)
    title = title.strip() if isinstance(title, str) and title.strip() else None

    source_type = normalize_source_type(_first(raw, TYPE_FIELDS)) or detect_source_type(url, title or "")

    domain_raw = raw.get("domain")
    domain = normalize_domain(domain_raw if isinstance(domain_raw, str) else url)

    return Citation(
        url=url,
        domain=domain or None,
        source_type=source_type,
        date=parse_datetime(_first(raw, DATE_FIELDS)),
        title=title,
    )


def normalize_citations(raw: Any) -> List[Citation]:
    """
    Normalize a list of raw citations, dropping invalid entries and duplicate URLs.

    Also accepts a mapping holding the list under 'citations', 'sources',
    'results' or 'references'.
    """
    if isinstance(raw, dict):
        for key in ("citations", "sources", "results", "references"):
            if isinstance(raw.get(key), list):
                return normalize_citations(raw[key])
        single = normalize_citation(raw)
        return [single] if single else []

    if not isinstance(raw, (list, tuple)):
        return []

    citations: List[Citation] = []
    seen = set()
    for item in raw:
        citation = normalize_citation(item)
        if citation is None:
            logger.debug(f"Dropping citation without a valid URL: {str(item)[:100]}")
            continue
        if citation.url in seen:
            continue
        seen.add(citation.url)
        citations.append(citation)
    return citations
