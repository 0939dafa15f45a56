"""Evidence step: collect and persist citations for every competitor/criterion pair."""

import logging
from typing import Any, Dict

from plinth.agents.base import BaseStepExecutor
from plinth.errors import ExternalFetchError
from plinth.services.evidence_collector import EvidenceCollector
from plinth.services.evidence_store import save_citations

logger = logging.getLogger(__name__)


class EvidenceExecutor(BaseStepExecutor):
    """Collects evidence through the search API."""

    step_name = "evidence"

    def __init__(self, db_session, collector: EvidenceCollector):
        super().__init__(db_session)
        self.collector = collector

    def _run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        run = self._load_run(payload)
        project = self._load_project(run)
        competitors = self._load_competitors(project)
        criteria = self._criteria(project)

        found = 0
        saved = 0
        failed_pairs = 0
        last_error = None

        for competitor in competitors:
            for criterion in criteria:
                try:
                    citations = self.collector.collect(competitor.name, criterion["name"], competitor.url)
                except Exception as e:
                    # One pair failing should not discard evidence already gathered for the others
                    failed_pairs += 1
                    last_error = e
                    logger.warning(f"Evidence collection failed for {competitor.name} / {criterion['name']}: {e}")
                    continue

                found += len(citations)
                saved += save_citations(
                    self.db, run.id, project.id, competitor.id, criterion["id"], citations
                )

        total_pairs = len(competitors) * len(criteria)
        if failed_pairs == total_pairs:
            raise ExternalFetchError(
                f"Evidence collection failed for all {total_pairs} pairs: {last_error}",
                step=self.step_name,
                upstream="search",
            )

        logger.info(f"Run {run.id}: found {found} sources, saved {saved} new")
        return {
            "counters": {
                "sources_found": found,
                "sources_saved": saved,
                "pairs_failed": failed_pairs,
            },
        }

    def _validate(self, result: Dict[str, Any]) -> bool:
        return "counters" in result
