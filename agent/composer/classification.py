"""
Query classification.

One LLM call extracts the routing metadata (domain, intent, organizations,
urgency, escalation and clarification needs, emotional state). Output is
validated against the known vocabularies; anything unusable falls back to a
neutral general classification so the turn can still be answered.
"""

from __future__ import annotations

import copy
from typing import Any, Dict

import structlog

from agent.composer.prompts import CLASSIFIER_TEMPLATE
from agent.llm.gateway import LLMGateway
from agent.llm.parsing import parse_llm_json
from agent.schemas.agent_state import EMOTIONAL_STATES, QUERY_INTENTS, TOPIC_DOMAINS
from libs.common.errors import ClassificationError, LLMParseError

logger = structlog.get_logger(__name__)

DEFAULT_CLASSIFICATION: Dict[str, Any] = {
    "topic_domain": None,
    "detected_org_ids": [],
    "query_intent": "general",
    "has_time_constraint": False,
    "should_escalate": False,
    "escalation_reason": None,
    "needs_clarification": False,
    "clarification_question": None,
    "emotional_state": "neutral",
}


def parse_classification(text: str) -> Dict[str, Any]:
    """
    Map raw classifier output to state fields.

    Unknown enum values are dropped, organizations are capped at one, and an
    escalation flag forces the ``escalation`` intent.

    Raises:
        ClassificationError: output is not a JSON object
    """
    try:
        data = parse_llm_json(text)
    except LLMParseError as e:
        raise ClassificationError(str(e)) from e
    if not isinstance(data, dict):
        raise ClassificationError("Classifier output is not a JSON object")

    domain = data.get("topicDomain")
    intent = data.get("queryIntent")
    emotional_state = data.get("emotionalState")
    org_ids = data.get("detectedNgbIds") or []
    if not isinstance(org_ids, list):
        org_ids = []

    should_escalate = bool(data.get("shouldEscalate", False))
    needs_clarification = bool(data.get("needsClarification", False))
    clarification_question = data.get("clarificationQuestion")

    result = {
        "topic_domain": domain if domain in TOPIC_DOMAINS else None,
        "detected_org_ids": [str(o) for o in org_ids if o][:1],
        "query_intent": intent if intent in QUERY_INTENTS else "general",
        "has_time_constraint": bool(data.get("hasTimeConstraint", False)),
        "should_escalate": should_escalate,
        "escalation_reason": data.get("escalationReason") if should_escalate else None,
        "needs_clarification": needs_clarification,
        "clarification_question": clarification_question if needs_clarification else None,
        "emotional_state": emotional_state if emotional_state in EMOTIONAL_STATES else "neutral",
    }
    if should_escalate:
        result["query_intent"] = "escalation"
    return result


async def classify_query(gateway: LLMGateway, message: str, conversation_context: str = "") -> Dict[str, Any]:
    """Classify the latest user message; defaults on any failure."""
    if not message.strip():
        return copy.deepcopy(DEFAULT_CLASSIFICATION)

    history_section = f"Conversation so far:\n{conversation_context}\n\n" if conversation_context else ""
    prompt = CLASSIFIER_TEMPLATE.format_messages(history_section=history_section, message=message)

    try:
        response = await gateway.ainvoke(prompt, role="classifier")
        return parse_classification(response)
    except ClassificationError as e:
        logger.warning("Classifier output unusable, using defaults", error=str(e))
    except Exception as e:
        logger.error("Classification failed, using defaults", error=str(e), error_type=type(e).__name__)
    return copy.deepcopy(DEFAULT_CLASSIFICATION)
