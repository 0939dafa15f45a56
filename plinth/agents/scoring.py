"""Scoring step: coverage gate and evidence-backed scores."""

import logging
from typing import Any, Dict

from plinth.agents.base import BaseStepExecutor
from plinth.errors import NotReadyError
from plinth.services.coverage import evaluate_coverage
from plinth.services.evidence_store import load_citations_by_pair
from plinth.services.scoring import score_pairs

logger = logging.getLogger(__name__)


class ScoringExecutor(BaseStepExecutor):
    """Gates the run on evidence coverage and scores every (competitor, criterion) pair.

    Scores are derived from the citation set whenever they are read, so the
    step only records counters.
    """

    step_name = "scoring"

    def _run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        run = self._load_run(payload)
        project = self._load_project(run)
        competitors = self._load_competitors(project)
        criteria = self._criteria(project)

        by_pair = load_citations_by_pair(self.db, run.id)
        corpus = [c for citations in by_pair.values() for c in citations]
        verdict = evaluate_coverage(corpus, competitor_domains=[c.url for c in competitors if c.url])

        if not verdict.is_sufficient:
            raise NotReadyError(
                "Insufficient evidence coverage: " + "; ".join(verdict.reasons),
                step=self.step_name,
                details={"reasons": "; ".join(verdict.reasons)},
            )

        scores = score_pairs(competitors, criteria, by_pair)
        scored = sum(1 for s in scores if s["status"] == "scored")
        logger.info(f"Run {run.id}: scored {scored}/{len(scores)} pairs")
        return {
            "counters": {
                "scored": scored,
                "unscored": len(scores) - scored,
                "total_sources": verdict.total_sources,
            },
        }

    def _validate(self, result: Dict[str, Any]) -> bool:
        return "scored" in result.get("counters", {})
