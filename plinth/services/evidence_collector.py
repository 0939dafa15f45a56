"""Search API client used to collect public evidence about competitors."""

import hashlib
import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from plinth.config import settings
from plinth.errors import ExternalFetchError
from plinth.schemas.evidence import Citation
from plinth.services.citations import normalize_citations

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))


class EvidenceCollector:
    """Client for the search API with timeout and retry logic."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        max_results: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize the collector."""
        self.api_key = api_key or settings.SEARCH_API_KEY
        self.api_url = api_url or settings.SEARCH_API_URL
        self.max_results = max_results or settings.SEARCH_MAX_RESULTS
        self.timeout = timeout or settings.SEARCH_TIMEOUT

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.3, max=5),
        reraise=True,
    )
    def search(self, query: str, include_domains: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """
        Run one search query.

        Args:
            query: Search query
            include_domains: Optional domains to restrict results to

        Returns:
            Raw result records (url, title, published_date, ...)

        Raises:
            ExternalFetchError: If no API key is configured
            httpx.HTTPError: On API errors after retries
        """
        if not self.api_key:
            raise ExternalFetchError("SEARCH_API_KEY is not configured", upstream="search")

        payload: Dict[str, Any] = {
            "query": query,
            "max_results": self.max_results,
            "search_depth": "basic",
            "include_answer": False,
            "include_raw_content": False,
        }
        if include_domains:
            payload["include_domains"] = include_domains

        query_hash = hashlib.sha256(query.encode()).hexdigest()
        logger.info(f"Search request, query hash: {query_hash[:16]}")

        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(
                self.api_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )
            if response.status_code in RETRYABLE_STATUS_CODES:
                logger.warning(f"Retryable error {response.status_code} from search API")
            response.raise_for_status()
            results = response.json().get("results") or []

        logger.info(f"Search returned {len(results)} results")
        return results

    def collect(
        self,
        competitor_name: str,
        criterion_name: str,
        competitor_url: Optional[str] = None,
    ) -> List[Citation]:
        """
        Collect normalized citations for one (competitor, criterion) pair.

        Args:
            competitor_name: Competitor name
            criterion_name: Evaluation criterion
            competitor_url: Official site, used for a second first-party query

        Returns:
            Deduplicated citations from all queries
        """
        query = f"{competitor_name} {criterion_name}"
        raw: List[Dict[str, Any]] = list(self.search(query))

        if competitor_url:
            domain = httpx.URL(competitor_url if "://" in competitor_url else f"https://{competitor_url}").host
            if domain:
                raw.extend(self.search(query, include_domains=[domain]))

        return normalize_citations(raw)
