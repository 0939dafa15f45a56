"""Synthesis step: ranked strategic bets from the analysis and scores."""

import logging
from typing import Any, Dict

from plinth.agents.base import BaseStepExecutor
from plinth.errors import NotReadyError
from plinth.services.evidence_store import citation_digest, load_citations_by_pair
from plinth.services.llm_client import LLMClient
from plinth.services.scoring import score_pairs
from plinth.services.step_status import get_step_status

logger = logging.getLogger(__name__)


class SynthesisExecutor(BaseStepExecutor):
    """Asks the content generator for ranked bets; its artifact becomes the run output."""

    step_name = "synthesis"

    def __init__(self, db_session, generator: LLMClient):
        super().__init__(db_session)
        self.generator = generator

    def _run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        run = self._load_run(payload)
        project = self._load_project(run)

        analysis = self._artifact(run, "analysis")
        if analysis is None or get_step_status(run, "scoring").status != "completed":
            raise NotReadyError(
                f"Run {run.id} needs analysis and scoring before synthesis",
                step=self.step_name,
            )

        competitors = self._load_competitors(project)
        by_pair = load_citations_by_pair(self.db, run.id)
        scores = score_pairs(competitors, self._criteria(project), by_pair)

        context = {
            "project": project.name,
            "market": project.market,
            "analysis": analysis,
            "scores": [
                {
                    "competitor": s["competitor_name"],
                    "criterion": s["criterion_id"],
                    "value": s["value"],
                    "label": s["label"],
                }
                for s in scores
                if s["status"] == "scored"
            ],
        }
        citations = [c for pair in by_pair.values() for c in pair]
        artifact = self.generator.generate("synthesis", context, citation_digest(citations))

        bets = artifact.get("bets") if isinstance(artifact.get("bets"), list) else []
        bets = sorted(
            (b for b in bets if isinstance(b, dict)),
            key=lambda b: b.get("rank") if isinstance(b.get("rank"), int) else 1_000_000,
        )
        return {
            "counters": {"bets": len(bets)},
            "artifact": {"bets": bets},
        }

    def _validate(self, result: Dict[str, Any]) -> bool:
        """Validate at least one bet was produced."""
        return len(result.get("artifact", {}).get("bets", [])) > 0
