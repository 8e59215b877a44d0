"""Stage graph and routing rules for one conversation turn.

Routing functions are pure: they read the state and return the next stage
without side effects, so the whole control flow can be tested without any
external dependency.
"""

from __future__ import annotations

from enum import Enum

from agent.schemas.agent_state import ConversationState
from libs.common.settings import Settings


class Stage(str, Enum):
    CLASSIFIER = "classifier"
    CLARIFY = "clarify"
    RETRIEVER = "retriever"
    RETRIEVAL_EXPANDER = "retrievalExpander"
    RESEARCHER = "researcher"
    SYNTHESIZER = "synthesizer"
    QUALITY_CHECKER = "qualityChecker"
    ESCALATE = "escalate"
    CITATION_BUILDER = "citationBuilder"
    DISCLAIMER_GUARD = "disclaimerGuard"
    END = "end"


def route_after_classifier(state: ConversationState) -> Stage:
    if state.needs_clarification:
        return Stage.CLARIFY
    if state.should_escalate:
        return Stage.ESCALATE
    return Stage.RETRIEVER


def route_after_retrieval(state: ConversationState, settings: Settings) -> Stage:
    """
    Confidence router; the first matching rule wins.

    1. escalation flagged -> escalate
    2. confidence >= gray zone upper bound -> synthesizer
    3. web results already present -> synthesizer
    4. confidence >= lower threshold -> researcher
    5. expansion not yet attempted -> retrievalExpander
    6. otherwise -> researcher
    """
    confidence = state.retrieval_confidence

    if state.should_escalate:
        return Stage.ESCALATE
    if confidence >= settings.gray_zone_upper_threshold:
        return Stage.SYNTHESIZER
    if state.web_search_results:
        return Stage.SYNTHESIZER
    if confidence >= settings.confidence_threshold:
        return Stage.RESEARCHER
    if not state.expansion_attempted and settings.feature_retrieval_expansion:
        return Stage.RETRIEVAL_EXPANDER
    return Stage.RESEARCHER


def route_after_synthesis(state: ConversationState, settings: Settings) -> Stage:
    if settings.feature_quality_checker:
        return Stage.QUALITY_CHECKER
    return Stage.CITATION_BUILDER


def route_after_quality(state: ConversationState, settings: Settings) -> Stage:
    """Re-synthesize once on a failed grade, otherwise continue.

    The synthesizer increments ``quality_retry_count`` when it runs as a
    retry, which bounds this loop.
    """
    result = state.quality_check_result
    if result is None or result.passed:
        return Stage.CITATION_BUILDER
    if state.quality_retry_count >= settings.quality_max_retries:
        return Stage.CITATION_BUILDER
    return Stage.SYNTHESIZER


def next_stage(stage: Stage, state: ConversationState, settings: Settings) -> Stage:
    """Transition function for the stage graph."""
    if stage is Stage.CLASSIFIER:
        return route_after_classifier(state)
    if stage in (Stage.RETRIEVER, Stage.RETRIEVAL_EXPANDER):
        return route_after_retrieval(state, settings)
    if stage is Stage.RESEARCHER:
        return Stage.SYNTHESIZER
    if stage is Stage.SYNTHESIZER:
        return route_after_synthesis(state, settings)
    if stage is Stage.QUALITY_CHECKER:
        return route_after_quality(state, settings)
    if stage is Stage.ESCALATE:
        return Stage.CITATION_BUILDER
    if stage is Stage.CITATION_BUILDER:
        return Stage.DISCLAIMER_GUARD
    return Stage.END
