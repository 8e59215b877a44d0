"""
Answer synthesis from retrieved context.

Context assembly is pure: documents ordered by score, annotated with their
provenance and authority tier, followed by any web results. The only side
effect is the single LLM call, which streams tokens to an optional sink.
"""

from __future__ import annotations

from typing import List, Optional

import structlog

from agent.composer.prompts import (
    SYNTHESIS_INSTRUCTIONS,
    SYNTHESIS_TEMPLATE,
    TONE_GUIDANCE,
    get_response_format,
)
from agent.llm.gateway import LLMGateway, TokenSink
from agent.schemas.agent_state import AUTHORITY_LABELS, QualityCheckResult, RetrievedDocument

logger = structlog.get_logger(__name__)

NO_CONTEXT_MESSAGE = "No documents or search results were found for this query."

EMPTY_QUESTION_ANSWER = "I wasn't able to understand your question. Could you please rephrase it?"

SYNTHESIS_ERROR_ANSWER = (
    "I encountered an error while generating your answer. Please try again, "
    "or contact the Athlete Ombuds at ombudsman@usathlete.org or 719-866-5000 "
    "for direct assistance."
)


def format_document(doc: RetrievedDocument, index: int) -> str:
    """One ``[Document N]`` block with its provenance header."""
    meta = doc.metadata
    parts = [f"[Document {index + 1}]"]

    if meta.document_title:
        parts.append(f"Title: {meta.document_title}")
    if meta.section_title:
        parts.append(f"Section: {meta.section_title}")
    if meta.document_type:
        parts.append(f"Type: {meta.document_type}")
    if meta.org_id:
        parts.append(f"Organization: {meta.org_id}")
    if meta.effective_date:
        parts.append(f"Effective Date: {meta.effective_date}")
    if meta.authority_level:
        parts.append(f"Authority Level: {AUTHORITY_LABELS.get(meta.authority_level, meta.authority_level)}")
    if meta.source_url:
        parts.append(f"Source: {meta.source_url}")
    if meta.alternative_sources:
        also = "; ".join(
            " - ".join(p for p in (alt.title or "Untitled", alt.section) if p)
            for alt in meta.alternative_sources
        )
        parts.append(f"Also found in: {also}")
    parts.append(f"Relevance Score: {doc.score:.4f}")
    parts.append("---")
    parts.append(doc.content)

    return "\n".join(parts)


def format_web_results(results: List[str]) -> str:
    if not results:
        return ""
    parts = ["[Web Search Results]"]
    for index, result in enumerate(results):
        parts.append(f"\n[Web Result {index + 1}]")
        parts.append(result)
    return "\n".join(parts)


def build_context(documents: List[RetrievedDocument], web_results: List[str]) -> str:
    """Full context string; a fixed notice when there is nothing to ground on."""
    sections = []
    if documents:
        ordered = sorted(documents, key=lambda d: d.score, reverse=True)
        sections.append("\n\n".join(format_document(doc, i) for i, doc in enumerate(ordered)))
    if web_results:
        sections.append(format_web_results(web_results))

    if not sections:
        return NO_CONTEXT_MESSAGE
    return "\n\n".join(sections)


def build_synthesis_messages(
    context: str,
    question: str,
    intent: Optional[str] = None,
    conversation_history: str = "",
    emotional_state: Optional[str] = None,
    quality_feedback: Optional[QualityCheckResult] = None,
):
    """Chat messages for the synthesis call."""
    history_section = ""
    if conversation_history:
        history_section = (
            "## Conversation History\n\n"
            "Build on these prior exchanges where relevant.\n\n"
            f"{conversation_history}\n\n"
        )

    revision_feedback = ""
    if quality_feedback is not None and not quality_feedback.passed:
        issues = "\n".join(f"- [{i.severity}] {i.type}: {i.description}" for i in quality_feedback.issues)
        revision_feedback = (
            "\n\n## Revision Feedback\n\nA previous draft was rejected by review. Address this feedback:\n"
            f"{quality_feedback.critique}\n{issues}".rstrip()
        )

    return SYNTHESIS_TEMPLATE.format_messages(
        context=context,
        history_section=history_section,
        question=question,
        instructions=SYNTHESIS_INSTRUCTIONS,
        response_format=get_response_format(intent),
        tone_guidance=TONE_GUIDANCE.get(emotional_state or "neutral", ""),
        revision_feedback=revision_feedback,
    )


async def synthesize_answer(
    gateway: LLMGateway,
    question: str,
    context: str,
    intent: Optional[str] = None,
    conversation_history: str = "",
    emotional_state: Optional[str] = None,
    quality_feedback: Optional[QualityCheckResult] = None,
    on_token: Optional[TokenSink] = None,
) -> str:
    """
    Generate the grounded answer.

    Never raises for dependency failures: an empty question gets a rephrase
    request and an LLM failure gets an apology naming the Athlete Ombuds.
    """
    if not question.strip():
        logger.warning("Synthesizer received empty user question")
        return EMPTY_QUESTION_ANSWER

    messages = build_synthesis_messages(
        context,
        question,
        intent=intent,
        conversation_history=conversation_history,
        emotional_state=emotional_state,
        quality_feedback=quality_feedback,
    )

    try:
        answer = await gateway.astream(messages, on_token=on_token, role="agent")
    except Exception as e:
        logger.error("Synthesis failed", error=str(e), error_type=type(e).__name__)
        return SYNTHESIS_ERROR_ANSWER

    if not answer.strip():
        logger.warning("Synthesis returned empty answer")
        return SYNTHESIS_ERROR_ANSWER
    return answer
