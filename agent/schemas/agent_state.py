"""Conversation state schema for the athlete governance agent.

One ConversationState is created per user turn and threaded through every
stage of the pipeline. Stages never mutate it directly; they return partial
update dicts which the orchestrator applies, so each field is validated on
assignment.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field

TopicDomain = Literal[
    "team_selection",
    "dispute_resolution",
    "safesport",
    "anti_doping",
    "eligibility",
    "governance",
    "athlete_rights",
    "athlete_safety",
    "financial_assistance",
]
QueryIntent = Literal["factual", "procedural", "deadline", "escalation", "general"]
EmotionalState = Literal["neutral", "distressed", "panicked", "fearful"]
Urgency = Literal["immediate", "standard"]
AuthorityLevel = Literal[
    "law",
    "international_rule",
    "usopc_governance",
    "usopc_policy_procedure",
    "independent_office",
    "anti_doping_national",
    "ngb_policy_procedure",
    "games_event_specific",
    "educational_guidance",
]

TOPIC_DOMAINS: tuple = get_args(TopicDomain)
QUERY_INTENTS: tuple = get_args(QueryIntent)
EMOTIONAL_STATES: tuple = get_args(EmotionalState)

# Most authoritative first.
AUTHORITY_LEVELS: tuple = get_args(AuthorityLevel)

AUTHORITY_LABELS: Dict[str, str] = {
    "law": "Federal/State Law",
    "international_rule": "International Rule",
    "usopc_governance": "USOPC Governance",
    "usopc_policy_procedure": "USOPC Policy",
    "independent_office": "Independent Office (SafeSport, Ombuds)",
    "anti_doping_national": "USADA Rules",
    "ngb_policy_procedure": "NGB Policy",
    "games_event_specific": "Games-Specific Rules",
    "educational_guidance": "Educational Guidance",
}


class ChatMessage(BaseModel):
    """A single conversation turn."""

    role: Literal["user", "assistant"] = Field(description="Who wrote the message")
    content: str = Field(description="Message text")


class AlternativeSource(BaseModel):
    """A near-duplicate passage folded into a representative document."""

    title: Optional[str] = Field(default=None, description="Document title")
    section: Optional[str] = Field(default=None, description="Section title")
    url: Optional[str] = Field(default=None, description="Source URL")
    authority_level: Optional[str] = Field(default=None, description="Authority tier of the source")
    score: float = Field(ge=0.0, le=1.0, description="Relevance score")


class DocumentMetadata(BaseModel):
    """Metadata carried by a retrieved passage."""

    model_config = ConfigDict(extra="allow")

    org_id: Optional[str] = Field(default=None, description="Organization (NGB) identifier, None for universal docs")
    topic_domain: Optional[str] = Field(default=None, description="Governance domain of the document")
    document_type: Optional[str] = Field(default=None, description="bylaws, policy, procedure, ...")
    source_url: Optional[str] = Field(default=None, description="Canonical source URL")
    document_title: Optional[str] = Field(default=None, description="Document title")
    section_title: Optional[str] = Field(default=None, description="Section or article title")
    effective_date: Optional[str] = Field(default=None, description="Effective date as published")
    ingested_at: Optional[str] = Field(default=None, description="Ingestion timestamp")
    authority_level: Optional[str] = Field(default=None, description="Source authority tier")
    alternative_sources: List[AlternativeSource] = Field(
        default_factory=list, description="Near-duplicates merged into this document"
    )


class RetrievedDocument(BaseModel):
    """A passage returned by the vector store."""

    content: str = Field(description="Passage text")
    score: float = Field(ge=0.0, le=1.0, description="Similarity score, higher is better")
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)


class Citation(BaseModel):
    """Source attribution surfaced to the caller."""

    title: str = Field(description="Document title")
    section: Optional[str] = Field(default=None, description="Section title")
    url: Optional[str] = Field(default=None, description="Source URL")
    authority_level: Optional[str] = Field(default=None, description="Source authority tier")
    document_type: str = Field(default="document", description="Document type")
    effective_date: Optional[str] = Field(default=None, description="Effective date")
    snippet: str = Field(default="", description="First 200 characters of the passage")


class QualityIssue(BaseModel):
    """A single problem reported by the quality grader."""

    type: Literal["generic_response", "hallucination_signal", "incomplete", "missing_specificity"]
    description: str = ""
    severity: Literal["critical", "major", "minor"]


class QualityCheckResult(BaseModel):
    """Outcome of the quality gate."""

    passed: bool
    score: float = Field(ge=0.0, le=1.0)
    issues: List[QualityIssue] = Field(default_factory=list)
    critique: str = ""


class EscalationInfo(BaseModel):
    """Referral to a human authority."""

    target: str = Field(description="Escalation target identifier")
    organization: str = Field(description="Organization name")
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_url: Optional[str] = None
    reason: str = Field(description="Why the user is being referred")
    urgency: Urgency = Field(description="immediate or standard")


class ConversationState(BaseModel):
    """Canonical record for one in-flight turn.

    Owned by exactly one turn; never shared across concurrent conversations.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    # Tracing
    trace_id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Unique trace identifier")
    conversation_id: Optional[str] = Field(default=None, description="Conversation key for the summary store")

    # Input
    messages: List[ChatMessage] = Field(default_factory=list, description="Conversation so far, latest last")
    conversation_summary: Optional[str] = Field(default=None, description="Rolling summary of older turns")

    # Classification
    topic_domain: Optional[TopicDomain] = None
    query_intent: Optional[QueryIntent] = None
    detected_org_ids: List[str] = Field(default_factory=list, max_length=1)
    has_time_constraint: bool = False
    should_escalate: bool = False
    escalation_reason: Optional[str] = None
    needs_clarification: bool = False
    clarification_question: Optional[str] = None
    emotional_state: EmotionalState = "neutral"

    # Retrieval
    retrieved_documents: List[RetrievedDocument] = Field(default_factory=list)
    retrieval_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    expansion_attempted: bool = False
    web_search_results: List[str] = Field(default_factory=list)
    web_search_result_urls: List[str] = Field(default_factory=list)

    # Output
    answer: Optional[str] = None
    citations: List[Citation] = Field(default_factory=list)
    escalation: Optional[EscalationInfo] = None
    disclaimer_required: bool = False

    # Quality gate
    quality_check_result: Optional[QualityCheckResult] = None
    quality_retry_count: int = Field(default=0, ge=0)

    # Observability
    trajectory: List[str] = Field(default_factory=list, description="Stages executed, in order")
    stage_timings: Dict[str, float] = Field(default_factory=dict, description="Stage durations in ms")

    def latest_user_message(self) -> str:
        """Text of the most recent user message, or empty string."""
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return ""

    def add_timing(self, stage_name: str, duration_ms: float) -> None:
        """Record execution time for a stage (last run wins)."""
        self.stage_timings[stage_name] = duration_ms


StreamEventType = Literal["text-delta", "citations", "escalation", "status", "discovered-urls", "error", "done"]


class StreamEvent(BaseModel):
    """Event delivered to a streaming caller."""

    type: StreamEventType = Field(description="Event type")
    text: Optional[str] = Field(default=None, description="Answer text for text-delta")
    citations: Optional[List[Citation]] = Field(default=None, description="Citations, sent once")
    escalation: Optional[EscalationInfo] = Field(default=None, description="Escalation, sent once")
    stage: Optional[str] = Field(default=None, description="Completed stage for status events")
    discovered_urls: Optional[List[str]] = Field(default=None, description="Web search result urls, sent once")
    error: Optional[str] = Field(default=None, description="Error message for error events")


def create_initial_state(
    messages: List[Dict[str, Any]] | List[ChatMessage],
    conversation_id: Optional[str] = None,
    conversation_summary: Optional[str] = None,
) -> ConversationState:
    """Create the state for a new turn from raw message dicts."""
    return ConversationState(
        messages=[m if isinstance(m, ChatMessage) else ChatMessage(**m) for m in messages],
        conversation_id=conversation_id,
        conversation_summary=conversation_summary,
    )
