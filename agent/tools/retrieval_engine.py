"""Vector retrieval for governance documents.

This module implements filtered semantic search over the governance corpus
with automatic broadening, authority-aware ranking, near-duplicate collapse
and a confidence signal that drives routing. It also implements the
one-shot query expansion used when the first retrieval is weak.

Every vector store call goes through the ``vector_store_read`` circuit
breaker. A failed or rejected search is treated as an empty result set so
that routing can fall through to web research instead of failing the turn.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from langchain_core.documents import Document
from langchain_core.vectorstores import VectorStore
from langsmith import traceable
from pydantic import BaseModel, Field

from agent.composer.prompts import RETRIEVAL_EXPANSION_TEMPLATE
from agent.llm.gateway import LLMGateway
from agent.llm.parsing import parse_llm_json
from agent.schemas.agent_state import (
    AUTHORITY_LEVELS,
    ChatMessage,
    DocumentMetadata,
    RetrievedDocument,
)
from agent.tools.deduplication import deduplicate_documents
from libs.common.errors import LLMParseError, RetrievalError
from libs.common.settings import Settings
from libs.memory.conversation_context import build_contextual_query
from libs.resilience.circuit_breaker import VECTOR_STORE_READ, CircuitBreakerRegistry

logger = structlog.get_logger(__name__)

MAX_CONTEXT_CHARS = 200
MAX_AUTHORITY_BOOST = 0.3
EXPANSION_QUERY_COUNT = 3

_ROLE_PREFIX = re.compile(r"^(User|Assistant):\s*", re.IGNORECASE | re.MULTILINE)
_WHITESPACE = re.compile(r"\s+")

SearchHit = Tuple[Document, float]


class RetrievalConfig(BaseModel):
    """Search sizes and thresholds for one engine instance."""

    top_k: int = Field(default=10, description="Documents kept after ranking")
    narrow_top_k: int = Field(default=20, description="Candidates for the filtered search")
    broad_top_k: int = Field(default=20, description="Candidates for the broadened search")
    expansion_top_k: int = Field(default=5, description="Candidates per reformulated query")
    min_narrow_results: int = Field(default=2, description="Broaden when the filtered search returns fewer")
    dedup_similarity_threshold: float = Field(default=0.85, description="Trigram Jaccard merge threshold")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetrievalConfig":
        return cls(
            top_k=settings.top_k,
            narrow_top_k=settings.narrow_top_k,
            broad_top_k=settings.broad_top_k,
            expansion_top_k=settings.expansion_top_k,
            dedup_similarity_threshold=settings.dedup_similarity_threshold,
        )


class RetrievalOutcome(BaseModel):
    """Documents and confidence produced by a retrieval pass."""

    documents: List[RetrievedDocument] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    broadened: bool = False
    queries: List[str] = Field(default_factory=list)


def build_filter(org_ids: List[str], topic_domain: Optional[str]) -> Optional[Dict[str, Any]]:
    """Metadata filter from the detected organization and domain."""
    conditions: Dict[str, Any] = {}
    if org_ids:
        conditions["org_id"] = org_ids[0]
    if topic_domain:
        conditions["topic_domain"] = topic_domain
    return conditions or None


def build_broad_filter(org_ids: List[str]) -> Optional[Dict[str, Any]]:
    """Organization-specific or universal documents; unfiltered without an organization."""
    if not org_ids:
        return None
    return {"$or": [{"org_id": org_ids[0]}, {"org_id": None}]}


def extract_context_terms(conversation_context: str) -> str:
    """First 200 chars of prior turns, role prefixes stripped."""
    if not conversation_context:
        return ""
    truncated = conversation_context[:MAX_CONTEXT_CHARS]
    return _WHITESPACE.sub(" ", _ROLE_PREFIX.sub(" ", truncated)).strip()


def build_enriched_query(messages: List[ChatMessage]) -> str:
    """Latest message enriched with terms from the last two turns."""
    current, context = build_contextual_query(messages, max_turns=2)
    if not current:
        return ""
    terms = extract_context_terms(context)
    if not terms:
        return current
    return f"{current.lower()} {terms.lower()}"


def authority_boost(level: Optional[str]) -> float:
    """0.3 for law down to 0 for educational guidance; 0 when unknown."""
    if level not in AUTHORITY_LEVELS:
        return 0.0
    index = AUTHORITY_LEVELS.index(level)
    return MAX_AUTHORITY_BOOST * (1 - index / (len(AUTHORITY_LEVELS) - 1))


def compute_confidence(scores: Iterable[float]) -> float:
    """
    Blend of the best and mean similarity.

    Scores are assumed sorted best-first. The best score carries 60% of the
    weight and the mean 40%; the result is clamped to [0, 1].
    """
    scores = list(scores)
    if not scores:
        return 0.0
    best = max(0.0, min(1.0, scores[0]))
    mean = max(0.0, min(1.0, sum(scores) / len(scores)))
    return max(0.0, min(1.0, best * 0.6 + mean * 0.4))


def rank_documents(documents: List[RetrievedDocument], top_k: int) -> List[RetrievedDocument]:
    """Order by similarity plus authority boost and keep ``top_k``.

    Stored scores stay raw similarity; the boost only affects selection order.
    """
    ranked = sorted(
        documents,
        key=lambda d: d.score + authority_boost(d.metadata.authority_level),
        reverse=True,
    )
    return ranked[:top_k]


def to_retrieved_document(hit: SearchHit) -> RetrievedDocument:
    doc, score = hit
    metadata = dict(doc.metadata or {})
    metadata.pop("alternative_sources", None)
    return RetrievedDocument(
        content=doc.page_content,
        score=max(0.0, min(1.0, float(score))),
        metadata=DocumentMetadata(**metadata),
    )


def merge_by_content(*groups: Iterable[RetrievedDocument]) -> List[RetrievedDocument]:
    """Union of document lists keyed by content, keeping the higher score."""
    merged: Dict[str, RetrievedDocument] = {}
    for group in groups:
        for doc in group:
            existing = merged.get(doc.content)
            if existing is None or doc.score > existing.score:
                merged[doc.content] = doc
    return list(merged.values())


def parse_reformulated_queries(text: str) -> List[str]:
    """JSON array of strings from the expansion model; empty when unusable."""
    try:
        data = parse_llm_json(text)
    except LLMParseError:
        return []
    if not isinstance(data, list) or not all(isinstance(q, str) for q in data):
        return []
    return [q.strip() for q in data if q.strip()][:EXPANSION_QUERY_COUNT]


class RetrievalEngine:
    """Semantic search with broadening, ranking and query expansion."""

    def __init__(
        self,
        vector_store: VectorStore,
        breakers: CircuitBreakerRegistry,
        config: Optional[RetrievalConfig] = None,
        gateway: Optional[LLMGateway] = None,
    ):
        self.vector_store = vector_store
        self.breakers = breakers
        self.config = config or RetrievalConfig()
        self.gateway = gateway

    async def search(self, query: str, k: int, filter: Optional[Dict[str, Any]] = None) -> List[SearchHit]:
        """
        One vector store search through the read breaker.

        Raises:
            RetrievalError: If the store call fails or the breaker is open
        """
        breaker = self.breakers.get(VECTOR_STORE_READ)
        try:
            hits = await breaker.call(self.vector_store.asimilarity_search_with_score, query, k=k, filter=filter)
        except Exception as e:
            raise RetrievalError(f"Vector search failed: {type(e).__name__}: {e}") from e
        return list(hits or [])

    async def _search_or_empty(self, query: str, k: int, filter: Optional[Dict[str, Any]] = None) -> List[SearchHit]:
        try:
            return await self.search(query, k, filter)
        except RetrievalError as e:
            logger.warning(
                "Vector search failed, treating as empty",
                error=str(e),
                error_type=type(e.__cause__).__name__,
                k=k,
                filtered=filter is not None,
            )
            return []

    @traceable(run_type="retriever", name="retrieve_documents", tags=["retrieval"])
    async def retrieve(
        self,
        messages: List[ChatMessage],
        topic_domain: Optional[str] = None,
        org_ids: Optional[List[str]] = None,
    ) -> RetrievalOutcome:
        """
        Narrow search first, broaden when it is too thin, then rank.

        Args:
            messages: Conversation so far, latest user message last
            topic_domain: Classified domain used in the narrow filter
            org_ids: Detected organization (at most one)

        Returns:
            RetrievalOutcome with at most ``top_k`` deduplicated documents
        """
        org_ids = org_ids or []
        query = build_enriched_query(messages)
        if not query:
            logger.warning("Retriever received empty query")
            return RetrievalOutcome()

        narrow_filter = build_filter(org_ids, topic_domain)
        hits: List[SearchHit] = []
        if narrow_filter:
            hits = await self._search_or_empty(query, self.config.narrow_top_k, narrow_filter)

        broadened = False
        if len(hits) < self.config.min_narrow_results:
            broadened = True
            logger.info("Broadening retrieval", narrow_count=len(hits), k=self.config.broad_top_k)
            broad_hits = await self._search_or_empty(query, self.config.broad_top_k, build_broad_filter(org_ids))
            seen = {doc.page_content for doc, _ in hits}
            for doc, score in broad_hits:
                if doc.page_content not in seen:
                    hits.append((doc, score))
                    seen.add(doc.page_content)

        ranked = rank_documents([to_retrieved_document(h) for h in hits], self.config.top_k)
        confidence = compute_confidence([d.score for d in sorted(ranked, key=lambda d: d.score, reverse=True)])
        documents = deduplicate_documents(ranked, self.config.dedup_similarity_threshold)

        logger.info(
            "Retrieval complete",
            candidates=len(hits),
            returned=len(documents),
            confidence=round(confidence, 3),
            broadened=broadened,
            topic_domain=topic_domain,
        )
        return RetrievalOutcome(documents=documents, confidence=confidence, broadened=broadened, queries=[query])

    async def reformulate(self, question: str, topic_domain: Optional[str], existing: List[RetrievedDocument]) -> List[str]:
        """Up to three alternative phrasings from the utility model."""
        if self.gateway is None:
            return []
        titles = [d.metadata.document_title for d in existing if d.metadata.document_title]
        prompt = RETRIEVAL_EXPANSION_TEMPLATE.format_messages(
            query=question,
            domain_context=f"Topic domain: {topic_domain or 'unknown'}\n\nAlready retrieved:\n",
            existing_docs="\n".join(f"- {t}" for t in titles) or "(none)",
        )
        response = await self.gateway.ainvoke(prompt, role="utility")
        return parse_reformulated_queries(response)

    @traceable(run_type="retriever", name="expand_retrieval", tags=["retrieval", "expansion"])
    async def expand(
        self,
        messages: List[ChatMessage],
        existing: List[RetrievedDocument],
        topic_domain: Optional[str] = None,
        org_ids: Optional[List[str]] = None,
    ) -> Optional[RetrievalOutcome]:
        """
        Reformulate the question and search again with each variant.

        Returns None when no reformulation could be produced; the caller
        keeps its existing documents in that case.
        """
        question, _ = build_contextual_query(messages)
        if not question:
            logger.warning("Retrieval expander received empty query")
            return None

        queries = await self.reformulate(question, topic_domain, existing)
        if not queries:
            logger.warning("No reformulated queries produced")
            return None

        logger.info("Generated reformulated queries", count=len(queries), queries=queries)
        search_filter = build_filter(org_ids or [], topic_domain)
        results = await asyncio.gather(
            *(self._search_or_empty(q, self.config.expansion_top_k, search_filter) for q in queries)
        )

        new_docs = [to_retrieved_document(hit) for hits in results for hit in hits]
        merged = merge_by_content(existing, new_docs)
        ranked = rank_documents(merged, self.config.top_k)
        confidence = compute_confidence([d.score for d in sorted(ranked, key=lambda d: d.score, reverse=True)])
        documents = deduplicate_documents(ranked, self.config.dedup_similarity_threshold)

        logger.info(
            "Retrieval expansion complete",
            original_docs=len(existing),
            new_docs=len(new_docs),
            returned=len(documents),
            confidence=round(confidence, 3),
        )
        return RetrievalOutcome(documents=documents, confidence=confidence, queries=queries)
