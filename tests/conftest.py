"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import plinth.models  # noqa: F401
from plinth.database import Base
from plinth.errors import AnalysisFailedError
from plinth.models.project import Competitor, Project
from plinth.schemas.evidence import Citation

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def engine(tmp_path):
    """File-backed SQLite so separate sessions behave like independent callers."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    """Session factory bound to the test database."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def test_db(session_factory):
    """Create a test database session for each test."""
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def project(test_db):
    """Project with two competitors and two criteria."""
    project = Project(
        name="Acme analysis",
        market="Project management software",
        criteria=[{"id": "pricing", "name": "Pricing"}, {"id": "integrations", "name": "Integrations"}],
        input_version=1,
    )
    test_db.add(project)
    test_db.flush()
    test_db.add_all(
        [
            Competitor(project_id=project.id, name="Asana", url="https://asana.com"),
            Competitor(project_id=project.id, name="Linear", url="https://www.linear.app"),
        ]
    )
    test_db.commit()
    test_db.refresh(project)
    return project


def make_citation(url, source_type="other", days_old=None, now=NOW):
    """Citation helper; days_old=None leaves the citation undated."""
    date = now - timedelta(days=days_old) if days_old is not None else None
    return Citation(url=url, source_type=source_type, date=date)


class FakeCollector:
    """Returns three fresh citations per pair: pricing and docs first-party, one review."""

    def __init__(self, fail=False, sparse=False):
        self.fail = fail
        self.sparse = sparse
        self.calls = 0

    def collect(self, name, criterion_name, url=None):
        self.calls += 1
        if self.fail:
            raise TimeoutError("search timed out")

        recent = datetime.now(timezone.utc) - timedelta(days=10)
        slug = criterion_name.lower()
        citations = [Citation(url=f"{url}/pricing", source_type="pricing", date=recent)]
        if self.sparse:
            return citations
        citations.append(Citation(url=f"{url}/docs/{slug}", source_type="docs", date=recent))
        citations.append(
            Citation(url=f"https://www.g2.com/products/{name.lower()}/{slug}", source_type="reviews", date=recent)
        )
        return citations


class FakeGenerator:
    """Canned generator output; fails the first N analysis calls when asked to."""

    def __init__(self, analysis_failures=0):
        self.analysis_failures = analysis_failures
        self.calls = []

    def generate(self, kind, context, citation_digest):
        self.calls.append(kind)
        if kind == "analysis":
            if self.analysis_failures:
                self.analysis_failures -= 1
                raise AnalysisFailedError("Generator returned invalid JSON")
            return {"competitors": [{"name": c["name"], "summary": "ok"} for c in context["competitors"]]}
        return {
            "bets": [
                {"rank": 2, "title": "Ship integrations marketplace"},
                {"rank": 1, "title": "Undercut on team pricing"},
            ]
        }
