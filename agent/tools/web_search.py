"""Web research against trusted governance sites.

Used when retrieval confidence is too low to answer from the corpus alone.
Searches go through the Tavily REST API restricted to official Olympic and
Paralympic governance domains, behind the ``web_search`` circuit breaker.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Tuple

import httpx
import structlog
from langsmith import traceable

from libs.resilience.circuit_breaker import WEB_SEARCH, CircuitBreakerRegistry
from libs.resilience.retry import transient_retry

logger = structlog.get_logger(__name__)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
MAX_SEARCH_RESULTS = 5

TRUSTED_DOMAINS: Tuple[str, ...] = (
    "usopc.org",
    "teamusa.org",
    "usada.org",
    "uscenterforsafesport.org",
    "usathlete.org",
    "tas-cas.org",
    "wada-ama.org",
    "olympics.com",
    "usaswimming.org",
    "usatf.org",
    "usagym.org",
    "usacycling.org",
    "usarowing.org",
    "usafencing.org",
)

DOMAIN_LABELS: Dict[str, str] = {
    "team_selection": "USOPC team selection procedures",
    "dispute_resolution": "USOPC athlete dispute resolution arbitration",
    "safesport": "SafeSport policy reporting",
    "anti_doping": "USADA anti-doping testing",
    "eligibility": "athlete eligibility requirements",
    "governance": "USOPC NGB governance",
    "athlete_rights": "athlete rights representation USOPC",
}


class WebSearchClient(Protocol):
    async def ainvoke(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...


class TavilySearchClient:
    """Minimal async Tavily client."""

    def __init__(self, api_key: str, timeout: float = 15.0, client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    @transient_retry
    async def ainvoke(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a search and return the decoded response body.

        Raises:
            httpx.HTTPStatusError: non-2xx response
        """
        body = {
            "query": payload["query"],
            "max_results": payload.get("max_results", MAX_SEARCH_RESULTS),
            "include_domains": list(payload.get("include_domains") or TRUSTED_DOMAINS),
            "search_depth": "basic",
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        if self._client is not None:
            response = await self._client.post(TAVILY_SEARCH_URL, json=body, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(TAVILY_SEARCH_URL, json=body, headers=headers)
        response.raise_for_status()
        return response.json()


def build_search_query(question: str, topic_domain: Optional[str]) -> str:
    """Question prefixed with a domain label to steer the search engine."""
    label = DOMAIN_LABELS.get(topic_domain or "")
    return f"{label} {question}" if label else question


def format_search_result(result: Dict[str, Any]) -> str:
    parts = []
    if result.get("title"):
        parts.append(f"Title: {result['title']}")
    if result.get("url"):
        parts.append(f"URL: {result['url']}")
    content = (result.get("content") or "").strip()
    if content:
        parts.append(content)
    return "\n".join(parts)


class WebResearcher:
    """Trusted-domain web search with fail-soft semantics."""

    def __init__(
        self,
        client: Optional[WebSearchClient],
        breakers: CircuitBreakerRegistry,
        max_results: int = MAX_SEARCH_RESULTS,
    ):
        self.client = client
        self.breakers = breakers
        self.max_results = max_results

    @traceable(run_type="tool", name="web_research", tags=["research", "web"])
    async def research(self, question: str, topic_domain: Optional[str] = None) -> Tuple[List[str], List[str]]:
        """
        Search trusted sites for ``question``.

        Returns:
            (result texts, result URLs), both empty when search is unavailable
        """
        if not question.strip():
            logger.warning("Researcher received empty user message")
            return [], []
        if self.client is None:
            logger.info("Web search not configured, skipping research")
            return [], []

        query = build_search_query(question, topic_domain)
        payload = {"query": query, "include_domains": list(TRUSTED_DOMAINS), "max_results": self.max_results}

        try:
            logger.info("Running web search", query=query[:200])
            response = await self.breakers.get(WEB_SEARCH).call(self.client.ainvoke, payload)
        except Exception as e:
            logger.error("Web search failed", error=str(e), error_type=type(e).__name__)
            return [], []

        results = (response or {}).get("results") or []
        texts: List[str] = []
        urls: List[str] = []
        for result in results[: self.max_results]:
            text = format_search_result(result)
            if not text:
                continue
            texts.append(text)
            if result.get("url"):
                urls.append(result["url"])

        logger.info("Web search complete", result_count=len(texts))
        return texts, urls
