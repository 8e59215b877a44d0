from __future__ import annotations

import time
from typing import AsyncGenerator

import orjson
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from agent.models import ChatRequest, ChatResponse
from agent.orchestrators.query_orchestrator import QueryOrchestrator
from agent.schemas.agent_state import StreamEvent, create_initial_state

logger = structlog.get_logger(__name__)
router = APIRouter()

SYNTHESIS_FAILURE = "The request could not be processed. Please try again later."


def get_orchestrator(request: Request) -> QueryOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Agent is not ready")
    return orchestrator


def format_sse(event: StreamEvent) -> str:
    """Server-Sent Events frame for one stream event."""
    payload = orjson.dumps(event.model_dump(mode="json", exclude_none=True)).decode()
    return f"event: {event.type}\ndata: {payload}\n\n"


@router.post("/v1/chat", response_model=ChatResponse, tags=["Chat"])
async def chat(
    chat_request: ChatRequest,
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> ChatResponse:
    """Answer one conversation turn.

    Example:
        ```bash
        curl -X POST http://localhost:8000/api/v1/chat \\
          -H "Content-Type: application/json" \\
          -d '{"messages": [{"role": "user", "content": "How does team selection work for swimming?"}]}'
        ```
    """
    start_time = time.time()
    state = create_initial_state(chat_request.messages, conversation_id=chat_request.conversation_id)

    try:
        result = await orchestrator.invoke(state)
    except Exception as e:
        logger.error("Chat turn failed", error=str(e), trace_id=state.trace_id, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=SYNTHESIS_FAILURE)

    return ChatResponse(
        answer=result.answer or "",
        citations=result.citations,
        escalation=result.escalation,
        web_search_urls=result.web_search_result_urls,
        topic_domain=result.topic_domain,
        query_intent=result.query_intent,
        disclaimer_required=result.disclaimer_required,
        trajectory=result.trajectory,
        trace_id=result.trace_id,
        processing_time_ms=int((time.time() - start_time) * 1000),
    )


@router.post("/v1/chat/stream", tags=["Chat"])
async def chat_stream(
    chat_request: ChatRequest,
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Answer one conversation turn as Server-Sent Events.

    Events: ``status``, ``text-delta``, ``citations``, ``escalation``,
    ``discovered-urls``, ``error`` and a final ``done``.
    """
    state = create_initial_state(chat_request.messages, conversation_id=chat_request.conversation_id)
    logger.info("Chat stream started", trace_id=state.trace_id)

    async def generate_sse_stream() -> AsyncGenerator[str, None]:
        stream = orchestrator.stream(state)
        try:
            async for event in stream:
                yield format_sse(event)
        finally:
            await stream.aclose()

    return StreamingResponse(
        generate_sse_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Trace-ID": state.trace_id},
    )
