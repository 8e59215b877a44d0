"""Request and response models for the HTTP host."""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from agent.schemas.agent_state import ChatMessage, Citation, EscalationInfo
from libs.resilience.circuit_breaker import CircuitBreakerMetrics


class ChatRequest(BaseModel):
    """A conversation turn submitted by a client.

    Attributes:
        messages: Conversation so far, ending with the user's new message
        conversation_id: Optional key used to load and extend the rolling summary
    """

    messages: List[ChatMessage] = Field(min_length=1, description="Conversation so far, latest last")
    conversation_id: Optional[str] = Field(default=None, max_length=128, description="Conversation identifier")

    @field_validator("messages")
    @classmethod
    def validate_last_message(cls, v: List[ChatMessage]) -> List[ChatMessage]:
        if v[-1].role != "user":
            raise ValueError("The last message must come from the user")
        if not v[-1].content.strip():
            raise ValueError("The last message cannot be empty")
        return v


class ChatResponse(BaseModel):
    """Final answer for a turn."""

    answer: str = Field(description="Answer text including any disclaimer")
    citations: List[Citation] = Field(default_factory=list)
    escalation: Optional[EscalationInfo] = None
    web_search_urls: List[str] = Field(default_factory=list, description="Urls found by web research")
    topic_domain: Optional[str] = None
    query_intent: Optional[str] = None
    disclaimer_required: bool = False
    trajectory: List[str] = Field(default_factory=list, description="Stages executed")
    trace_id: str
    processing_time_ms: int


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""

    status: Literal["healthy", "ready", "not_ready"] = Field(description="Health status")
    service: str = Field(description="Service name")
    version: str = Field(description="Service version")
    timestamp: float = Field(description="Unix timestamp")
    circuit_breakers: Optional[Dict[str, CircuitBreakerMetrics]] = Field(
        default=None, description="Per-dependency breaker metrics (readiness only)"
    )
