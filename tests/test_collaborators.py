"""Tests for the search and generator clients without network access."""

import pytest

from plinth.errors import AnalysisFailedError, ExternalFetchError
from plinth.services.evidence_collector import EvidenceCollector
from plinth.services.llm_client import LLMClient


def test_collect_adds_first_party_query_and_dedups(monkeypatch):
    collector = EvidenceCollector(api_key="test")
    queries = []

    def fake_search(query, include_domains=None):
        queries.append((query, include_domains))
        if include_domains:
            return [
                {"url": "https://asana.com/pricing/", "title": "Asana Pricing", "published_date": "2025-05-01"},
                {"url": "https://asana.com/pricing#plans"},
            ]
        return [
            {"url": "https://www.g2.com/products/asana/reviews", "title": "Asana Reviews"},
            {"url": "mailto:sales@asana.com"},
        ]

    monkeypatch.setattr(collector, "search", fake_search)

    citations = collector.collect("Asana", "Pricing", "https://asana.com")

    assert queries == [("Asana Pricing", None), ("Asana Pricing", ["asana.com"])]
    assert [c.url for c in citations] == ["https://www.g2.com/products/asana/reviews", "https://asana.com/pricing"]
    assert [c.source_type for c in citations] == ["reviews", "pricing"]
    assert citations[1].date is not None


def test_search_without_key_fails_fast():
    collector = EvidenceCollector(api_key="")
    collector.api_key = None

    with pytest.raises(ExternalFetchError) as exc_info:
        collector.search("Asana pricing")

    assert exc_info.value.upstream == "search"


def test_generate_parses_json_object(monkeypatch):
    client = LLMClient(api_key="test")
    prompts = []

    def fake_completion(messages, temperature=0.3, max_tokens=4000):
        prompts.append(messages[0]["content"])
        return '{"bets": [{"rank": 1, "title": "Undercut pricing"}]}'

    monkeypatch.setattr(client, "chat_completion", fake_completion)

    result = client.generate("synthesis", {"project": "Acme"}, "- [pricing] https://asana.com/pricing (undated)")

    assert result["bets"][0]["rank"] == 1
    assert "https://asana.com/pricing" in prompts[0]


def test_generate_rejects_non_object(monkeypatch):
    client = LLMClient(api_key="test")
    monkeypatch.setattr(client, "chat_completion", lambda messages, **kwargs: "[1, 2]")

    with pytest.raises(AnalysisFailedError):
        client.generate("analysis", {}, "")

    monkeypatch.setattr(client, "chat_completion", lambda messages, **kwargs: "not json")
    with pytest.raises(AnalysisFailedError):
        client.generate("analysis", {}, "")


def test_security_warning_is_prepended_without_mutating_input():
    client = LLMClient(api_key="test")
    messages = [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "hi"}]

    secured = client._add_security_warnings(messages)

    assert secured[0]["content"].startswith("SECURITY WARNINGS:")
    assert secured[0]["content"].endswith("Be brief.")
    assert messages[0]["content"] == "Be brief."
