"""Analysis step: competitor analysis grounded in the collected evidence."""

import logging
from typing import Any, Dict

from plinth.agents.base import BaseStepExecutor
from plinth.errors import NotReadyError
from plinth.services.evidence_store import citation_digest, load_run_citations
from plinth.services.llm_client import LLMClient

logger = logging.getLogger(__name__)


class AnalysisExecutor(BaseStepExecutor):
    """Asks the content generator for a per-competitor analysis."""

    step_name = "analysis"

    def __init__(self, db_session, generator: LLMClient):
        super().__init__(db_session)
        self.generator = generator

    def _run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        run = self._load_run(payload)
        project = self._load_project(run)
        competitors = self._load_competitors(project)

        citations = load_run_citations(self.db, run.id)
        if not citations:
            raise NotReadyError(f"Run {run.id} has no evidence to analyze", step=self.step_name)

        context = {
            "project": project.name,
            "market": project.market,
            "competitors": [{"name": c.name, "url": c.url} for c in competitors],
            "criteria": self._criteria(project),
        }
        artifact = self.generator.generate("analysis", context, citation_digest(citations))

        return {
            "counters": {"citations_used": len(citations)},
            "artifact": artifact,
        }

    def _validate(self, result: Dict[str, Any]) -> bool:
        """Validate the analysis covers at least one competitor."""
        competitors = result.get("artifact", {}).get("competitors")
        return isinstance(competitors, list) and len(competitors) > 0
