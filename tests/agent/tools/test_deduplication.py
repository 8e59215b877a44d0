"""
Tests for near-duplicate clustering of retrieved passages.

Tests verify:
- Near-duplicates collapse onto the most authoritative member
- Siblings are kept as alternative sources, never dropped
- Dissimilar passages are never merged
- Idempotence and trivial inputs
"""

import pytest

from agent.schemas.agent_state import AlternativeSource
from agent.tools.deduplication import (
    UnionFind,
    authority_index,
    deduplicate_documents,
    jaccard_similarity,
    trigrams,
)

POLICY = (
    "Athletes must be notified in writing of any selection decision within five business days "
    "and may file a grievance with the national governing body."
)
POLICY_QUOTED = POLICY + " "
OTHER = "The Athlete Ombuds provides free and confidential advice about arbitration deadlines."


class TestSimilarityPrimitives:
    def test_trigrams_normalise_case_and_whitespace(self):
        assert trigrams("Ab  C") == trigrams("ab c")

    def test_short_text_has_no_trigrams(self):
        assert trigrams("ab") == set()

    def test_empty_sets_never_similar(self):
        assert jaccard_similarity(set(), set()) == 0.0
        assert jaccard_similarity({"abc"}, set()) == 0.0

    def test_identical_sets(self):
        grams = trigrams(POLICY)
        assert jaccard_similarity(grams, grams) == 1.0

    def test_unknown_authority_ranks_last(self):
        assert authority_index("law") == 0
        assert authority_index("educational_guidance") == 8
        assert authority_index(None) > authority_index("educational_guidance")

    def test_union_find_merges_transitively(self):
        uf = UnionFind(4)
        uf.union(0, 1)
        uf.union(1, 2)
        assert uf.find(0) == uf.find(2)
        assert uf.find(3) != uf.find(0)


class TestDeduplicateDocuments:
    def test_empty_and_single_returned_unchanged(self, doc):
        assert deduplicate_documents([]) == []
        single = [doc(POLICY, 0.8)]
        assert deduplicate_documents(single) == single

    def test_higher_authority_becomes_representative(self, doc):
        ngb = doc(POLICY, 0.9, document_title="NGB Handbook", authority_level="ngb_policy_procedure")
        usopc = doc(POLICY_QUOTED, 0.7, document_title="USOPC Policy", authority_level="usopc_policy_procedure")

        result = deduplicate_documents([ngb, usopc])

        assert len(result) == 1
        assert result[0].metadata.document_title == "USOPC Policy"
        alternatives = result[0].metadata.alternative_sources
        assert len(alternatives) == 1
        assert alternatives[0].title == "NGB Handbook"
        assert alternatives[0].score == 0.9

    def test_equal_authority_prefers_higher_score(self, doc):
        low = doc(POLICY, 0.6, document_title="Low", authority_level="law")
        high = doc(POLICY_QUOTED, 0.8, document_title="High", authority_level="law")

        result = deduplicate_documents([low, high])

        assert result[0].metadata.document_title == "High"

    def test_dissimilar_documents_not_merged(self, doc):
        docs = [doc(POLICY, 0.9), doc(OTHER, 0.5)]

        result = deduplicate_documents(docs)

        assert len(result) == 2
        assert all(not d.metadata.alternative_sources for d in result)

    def test_output_sorted_by_score(self, doc):
        docs = [doc(OTHER, 0.3), doc(POLICY, 0.9, authority_level="law"), doc(POLICY_QUOTED, 0.95)]

        result = deduplicate_documents(docs)

        assert [d.score for d in result] == sorted((d.score for d in result), reverse=True)

    def test_idempotent(self, doc):
        docs = [
            doc(POLICY, 0.9, authority_level="ngb_policy_procedure"),
            doc(POLICY_QUOTED, 0.7, authority_level="law"),
            doc(OTHER, 0.5),
        ]

        once = deduplicate_documents(docs)
        twice = deduplicate_documents(once)

        assert [d.model_dump() for d in twice] == [d.model_dump() for d in once]

    @pytest.mark.parametrize("threshold", [0.99, 1.0])
    def test_threshold_is_respected(self, doc, threshold):
        docs = [doc(POLICY, 0.9), doc(POLICY.replace("five", "ten"), 0.8)]

        result = deduplicate_documents(docs, threshold=threshold)

        assert len(result) == 2

    def test_existing_alternatives_not_repeated(self, doc):
        law = doc(POLICY, 0.8, document_title="Ted Stevens Act", authority_level="law")
        law.metadata.alternative_sources = [
            AlternativeSource(title="NGB Handbook", authority_level="ngb_policy_procedure", score=0.7)
        ]
        refound = doc(POLICY_QUOTED, 0.7, document_title="NGB Handbook", authority_level="ngb_policy_procedure")

        result = deduplicate_documents([law, refound])

        assert [a.title for a in result[0].metadata.alternative_sources] == ["NGB Handbook"]

    def test_sibling_alternatives_carried_over(self, doc):
        ngb = doc(POLICY, 0.9, document_title="NGB Handbook", authority_level="ngb_policy_procedure")
        ngb.metadata.alternative_sources = [
            AlternativeSource(title="Club Guide", authority_level="educational_guidance", score=0.5)
        ]
        law = doc(POLICY_QUOTED, 0.7, document_title="Ted Stevens Act", authority_level="law")

        result = deduplicate_documents([ngb, law])

        assert result[0].metadata.document_title == "Ted Stevens Act"
        assert [a.title for a in result[0].metadata.alternative_sources] == ["NGB Handbook", "Club Guide"]

    def test_untitled_siblings_still_recorded(self, doc):
        docs = [doc(POLICY, 0.9, authority_level="ngb_policy_procedure"), doc(POLICY_QUOTED, 0.7, authority_level="law")]

        result = deduplicate_documents(docs)

        assert len(result[0].metadata.alternative_sources) == 1
