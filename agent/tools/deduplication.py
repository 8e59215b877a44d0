"""Near-duplicate clustering for retrieved passages.

The same provision is often ingested from several documents (a USOPC policy
quoted in an NGB handbook, for example). Passages whose character-trigram
Jaccard similarity reaches the threshold are clustered with union-find; each
cluster keeps its most authoritative member and records the others as
alternative sources.
"""

from __future__ import annotations

import math
import re
from typing import Dict, List, Set, Tuple

import structlog

from agent.schemas.agent_state import AUTHORITY_LEVELS, AlternativeSource, RetrievedDocument

logger = structlog.get_logger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.85

_WHITESPACE = re.compile(r"\s+")


def trigrams(text: str) -> Set[str]:
    """Character trigrams of lower-cased, whitespace-collapsed text."""
    normalized = _WHITESPACE.sub(" ", text.lower()).strip()
    return {normalized[i:i + 3] for i in range(len(normalized) - 2)}


def jaccard_similarity(a: Set[str], b: Set[str]) -> float:
    """Intersection over union; 0.0 when either set is empty."""
    if not a or not b:
        return 0.0
    union = len(a | b)
    return len(a & b) / union if union else 0.0


def authority_index(level: str | None) -> float:
    """Position in the authority hierarchy; unknown levels rank last."""
    try:
        return AUTHORITY_LEVELS.index(level)
    except ValueError:
        return math.inf


class UnionFind:
    """Disjoint sets with path compression and union by rank."""

    def __init__(self, size: int):
        self.parent = list(range(size))
        self.rank = [0] * size

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, a: int, b: int) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        if self.rank[root_a] < self.rank[root_b]:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a
        if self.rank[root_a] == self.rank[root_b]:
            self.rank[root_a] += 1


def _to_alternative(doc: RetrievedDocument) -> AlternativeSource:
    return AlternativeSource(
        title=doc.metadata.document_title,
        section=doc.metadata.section_title,
        url=doc.metadata.source_url,
        authority_level=doc.metadata.authority_level,
        score=doc.score,
    )


def _source_key(title, section, url, authority_level) -> Tuple[str, str, str, str]:
    return (title or "", section or "", url or "", authority_level or "")


def _merge_alternatives(representative: RetrievedDocument, siblings: List[RetrievedDocument]) -> List[AlternativeSource]:
    """Alternatives of a cluster, one per source and never the representative itself."""
    meta = representative.metadata
    seen = {_source_key(meta.document_title, meta.section_title, meta.source_url, meta.authority_level)}
    candidates = list(meta.alternative_sources)
    for sibling in siblings:
        candidates.append(_to_alternative(sibling))
        candidates.extend(sibling.metadata.alternative_sources)

    merged: List[AlternativeSource] = []
    for alt in candidates:
        key = _source_key(alt.title, alt.section, alt.url, alt.authority_level)
        if key in seen:
            continue
        seen.add(key)
        merged.append(alt)
    return merged


def deduplicate_documents(
    documents: List[RetrievedDocument],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> List[RetrievedDocument]:
    """Collapse near-duplicate passages into authoritative representatives.

    Args:
        documents: Retrieved passages, normally sorted by score descending
        threshold: Minimum Jaccard similarity for two passages to merge

    Returns:
        Representatives sorted by score descending. Merged siblings are kept
        on ``metadata.alternative_sources`` of their representative.
    """
    if len(documents) <= 1:
        return list(documents)

    grams = [trigrams(doc.content) for doc in documents]
    clusters = UnionFind(len(documents))

    for i in range(len(documents)):
        for j in range(i + 1, len(documents)):
            if jaccard_similarity(grams[i], grams[j]) >= threshold:
                clusters.union(i, j)

    members: Dict[int, List[int]] = {}
    for i in range(len(documents)):
        members.setdefault(clusters.find(i), []).append(i)

    result: List[RetrievedDocument] = []
    for indices in members.values():
        if len(indices) == 1:
            result.append(documents[indices[0]])
            continue

        best = min(
            indices,
            key=lambda i: (authority_index(documents[i].metadata.authority_level), -documents[i].score),
        )
        representative = documents[best]
        siblings = [documents[i] for i in indices if i != best]

        metadata = representative.metadata.model_copy(
            update={"alternative_sources": _merge_alternatives(representative, siblings)}
        )
        result.append(representative.model_copy(update={"metadata": metadata}))

    result.sort(key=lambda doc: doc.score, reverse=True)

    if len(result) < len(documents):
        logger.info("Deduplicated retrieved documents", before=len(documents), after=len(result))

    return result
