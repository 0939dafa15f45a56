"""Tests for citation normalization."""

from datetime import datetime, timezone

from plinth.services.citations import (
    canonicalize_url,
    detect_source_type,
    normalize_citation,
    normalize_citations,
    normalize_source_type,
)


def test_canonicalize_url():
    assert canonicalize_url("HTTPS://Asana.COM/Pricing/#plans") == "https://asana.com/Pricing"
    assert canonicalize_url("asana.com/pricing") == "https://asana.com/pricing"
    assert canonicalize_url("ftp://asana.com/file") is None
    assert canonicalize_url("") is None
    assert canonicalize_url("javascript:alert(1)") is None


def test_detect_source_type_from_url():
    assert detect_source_type("https://asana.com/pricing") == "pricing"
    assert detect_source_type("https://developers.asana.com/docs/quick-start") == "docs"
    assert detect_source_type("https://www.g2.com/products/asana/reviews") == "reviews"
    assert detect_source_type("https://asana.com/careers") == "jobs"
    assert detect_source_type("https://asana.com/changelog") == "changelog"
    assert detect_source_type("https://asana.com/") == "other"


def test_detect_source_type_from_title():
    assert detect_source_type("https://example.com/x", "Asana Pricing explained") == "pricing"


def test_normalize_source_type_aliases():
    assert normalize_source_type("Documentation") == "docs"
    assert normalize_source_type("release-notes") == "changelog"
    assert normalize_source_type("review") == "reviews"
    assert normalize_source_type("") is None
    assert normalize_source_type(42) is None


def test_normalize_citation_from_string():
    citation = normalize_citation("https://www.asana.com/pricing/")

    assert citation.url == "https://www.asana.com/pricing"
    assert citation.domain == "asana.com"
    assert citation.source_type == "pricing"
    assert citation.date is None


def test_normalize_citation_from_camel_case_record():
    citation = normalize_citation(
        {
            "href": "https://linear.app/blog/launch",
            "sourceType": "marketing_site",
            "publishedAt": "2025-05-01T00:00:00Z",
            "pageTitle": "  Launch week  ",
        }
    )

    assert citation.url == "https://linear.app/blog/launch"
    assert citation.source_type == "blog"
    assert citation.date == datetime(2025, 5, 1, tzinfo=timezone.utc)
    assert citation.title == "Launch week"


def test_normalize_citation_rejects_invalid():
    assert normalize_citation({"title": "no url"}) is None
    assert normalize_citation({"url": "mailto:sales@asana.com"}) is None
    assert normalize_citation(None) is None


def test_unparseable_date_is_dropped():
    citation = normalize_citation({"url": "https://asana.com", "date": "last tuesday"})

    assert citation is not None
    assert citation.date is None


def test_normalize_citations_dedups_and_unwraps():
    raw = {
        "results": [
            {"url": "https://asana.com/pricing", "published_date": "2025-01-01"},
            {"url": "https://asana.com/pricing/"},
            "https://asana.com/pricing#faq",
            {"url": "not a url at all"},
            "https://linear.app/docs",
        ]
    }

    citations = normalize_citations(raw)

    assert [c.url for c in citations] == ["https://asana.com/pricing", "https://linear.app/docs"]
    assert citations[0].date == datetime(2025, 1, 1, tzinfo=timezone.utc)


def test_normalize_citations_non_list():
    assert normalize_citations("https://asana.com") == []
    assert normalize_citations(None) == []
