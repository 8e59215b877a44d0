"""Query orchestrator for the athlete governance agent.

This module runs one conversation turn through the stage graph defined in
``agent.orchestrators.routing``: classification, retrieval with confidence
routing, optional expansion and web research, synthesis, the quality gate,
escalation, citation building and the disclaimer guard.

Each stage is a node method that takes the state and returns a partial update
dict. Nodes catch dependency failures themselves and return degraded updates,
so a turn always ends with an answer. The runner applies updates, records
timings and the trajectory, and publishes a snapshot after every stage for
streaming callers.
"""

import asyncio
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Set

import structlog
from langsmith import traceable

from agent.composer.classification import classify_query
from agent.composer.disclaimers import append_disclaimer
from agent.composer.escalation import (
    build_escalation_info,
    build_referral_message,
    compose_referral,
    determine_urgency,
    resolve_targets,
)
from agent.composer.prompts import with_empathy
from agent.composer.quality_gates import QualityChecker
from agent.composer.summarizer import ConversationSummarizer
from agent.composer.synthesis import SYNTHESIS_ERROR_ANSWER, build_context, synthesize_answer
from agent.llm.gateway import LLMGateway
from agent.orchestrators.routing import Stage, next_stage
from agent.orchestrators.stream_adapter import StageEvent, adapt_stream
from agent.schemas.agent_state import ChatMessage, Citation, ConversationState, StreamEvent
from agent.tools.retrieval_engine import RetrievalEngine
from agent.tools.web_search import WebResearcher
from libs.common.settings import Settings
from libs.memory.conversation_context import build_contextual_query
from libs.memory.summary_store import SummaryStore

logger = structlog.get_logger(__name__)

EventSink = Callable[[StageEvent], Awaitable[None]]

DEFAULT_CLARIFICATION = (
    "I'd like to help you, but I need a bit more information. Could you please specify "
    "which sport or organization your question relates to?"
)

SNIPPET_CHARS = 200

# Upper bound on stage executions per turn; the graph itself terminates well below this.
MAX_STAGE_STEPS = 25

_STREAM_END = object()


class QueryOrchestrator:
    """Runs conversation turns through the stage graph.

    Exposes ``invoke`` (final state) and ``stream`` (caller events). One
    instance serves many concurrent turns; it holds no per-turn state.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: LLMGateway,
        retrieval: RetrievalEngine,
        researcher: WebResearcher,
        quality_checker: Optional[QualityChecker] = None,
        summary_store: Optional[SummaryStore] = None,
        summarizer: Optional[ConversationSummarizer] = None,
    ):
        self.settings = settings
        self.gateway = gateway
        self.retrieval = retrieval
        self.researcher = researcher
        self.quality_checker = quality_checker or QualityChecker(gateway)
        self.summary_store = summary_store
        self.summarizer = summarizer
        self._background_tasks: Set[asyncio.Task] = set()

        self.nodes = {
            Stage.CLASSIFIER: self._classifier_node,
            Stage.CLARIFY: self._clarify_node,
            Stage.RETRIEVER: self._retriever_node,
            Stage.RETRIEVAL_EXPANDER: self._retrieval_expander_node,
            Stage.RESEARCHER: self._researcher_node,
            Stage.SYNTHESIZER: self._synthesizer_node,
            Stage.QUALITY_CHECKER: self._quality_checker_node,
            Stage.ESCALATE: self._escalate_node,
            Stage.CITATION_BUILDER: self._citation_builder_node,
            Stage.DISCLAIMER_GUARD: self._disclaimer_guard_node,
        }

    def _conversation_context(self, state: ConversationState) -> str:
        _, context = build_contextual_query(
            state.messages,
            max_turns=self.settings.max_history_turns,
            summary=state.conversation_summary,
            summary_max_turns=self.settings.summary_history_turns,
            max_chars=self.settings.max_message_chars,
        )
        return context

    # ------------------------------------------------------------------
    # Stage nodes
    # ------------------------------------------------------------------

    @traceable(run_type="llm", name="classifier", tags=["classification", "routing"])
    async def _classifier_node(self, state: ConversationState, emit: Optional[EventSink] = None) -> Dict[str, Any]:
        """Classify the latest message into routing metadata."""
        logger.info("classifier start", trace_id=state.trace_id)
        result = await classify_query(self.gateway, state.latest_user_message(), self._conversation_context(state))
        logger.info(
            "classifier completed",
            topic_domain=result["topic_domain"],
            intent=result["query_intent"],
            should_escalate=result["should_escalate"],
            needs_clarification=result["needs_clarification"],
            trace_id=state.trace_id,
        )
        return result

    async def _clarify_node(self, state: ConversationState, emit: Optional[EventSink] = None) -> Dict[str, Any]:
        question = state.clarification_question or DEFAULT_CLARIFICATION
        return {"answer": with_empathy(question, state.emotional_state)}

    @traceable(run_type="retriever", name="retriever", tags=["retrieval"])
    async def _retriever_node(self, state: ConversationState, emit: Optional[EventSink] = None) -> Dict[str, Any]:
        """Filtered vector search with broadening and confidence."""
        try:
            outcome = await self.retrieval.retrieve(state.messages, state.topic_domain, state.detected_org_ids)
        except Exception as e:
            logger.error("retriever failed", error=str(e), trace_id=state.trace_id)
            return {"retrieved_documents": [], "retrieval_confidence": 0.0}

        return {"retrieved_documents": outcome.documents, "retrieval_confidence": outcome.confidence}

    @traceable(run_type="retriever", name="retrieval_expander", tags=["retrieval", "expansion"])
    async def _retrieval_expander_node(self, state: ConversationState, emit: Optional[EventSink] = None) -> Dict[str, Any]:
        """One-shot query reformulation; always latches expansion_attempted."""
        try:
            outcome = await self.retrieval.expand(
                state.messages,
                state.retrieved_documents,
                state.topic_domain,
                state.detected_org_ids,
            )
        except Exception as e:
            logger.error("retrieval_expander failed", error=str(e), trace_id=state.trace_id)
            return {"expansion_attempted": True}

        if outcome is None:
            return {"expansion_attempted": True}
        return {
            "retrieved_documents": outcome.documents,
            "retrieval_confidence": outcome.confidence,
            "expansion_attempted": True,
        }

    @traceable(run_type="tool", name="researcher", tags=["research", "web"])
    async def _researcher_node(self, state: ConversationState, emit: Optional[EventSink] = None) -> Dict[str, Any]:
        try:
            results, urls = await self.researcher.research(state.latest_user_message(), state.topic_domain)
        except Exception as e:
            logger.error("researcher failed", error=str(e), trace_id=state.trace_id)
            results, urls = [], []
        return {"web_search_results": results, "web_search_result_urls": urls}

    @traceable(run_type="llm", name="synthesizer", tags=["synthesis", "streaming"])
    async def _synthesizer_node(self, state: ConversationState, emit: Optional[EventSink] = None) -> Dict[str, Any]:
        """Generate the grounded answer, streaming tokens when a sink is attached."""
        updates: Dict[str, Any] = {}
        feedback = state.quality_check_result
        if feedback is not None and not feedback.passed:
            updates["quality_retry_count"] = state.quality_retry_count + 1
            logger.info("synthesizer retry", retry_count=updates["quality_retry_count"], trace_id=state.trace_id)
        else:
            feedback = None

        on_token = None
        if emit is not None:
            async def on_token(text: str) -> None:
                await emit(StageEvent.token(Stage.SYNTHESIZER.value, text))

        answer = await synthesize_answer(
            self.gateway,
            question=state.latest_user_message(),
            context=build_context(state.retrieved_documents, state.web_search_results),
            intent=state.query_intent,
            conversation_history=self._conversation_context(state),
            emotional_state=state.emotional_state,
            quality_feedback=feedback,
            on_token=on_token,
        )
        updates["answer"] = answer
        return updates

    @traceable(run_type="chain", name="quality_checker", tags=["quality", "verification"])
    async def _quality_checker_node(self, state: ConversationState, emit: Optional[EventSink] = None) -> Dict[str, Any]:
        result = await self.quality_checker.check(
            state.answer,
            question=state.latest_user_message(),
            context=build_context(state.retrieved_documents, state.web_search_results),
            intent=state.query_intent,
        )
        return {"quality_check_result": result}

    @traceable(run_type="chain", name="escalate", tags=["escalation"])
    async def _escalate_node(self, state: ConversationState, emit: Optional[EventSink] = None) -> Dict[str, Any]:
        """Refer the athlete to the responsible authority."""
        domain = state.topic_domain
        targets = resolve_targets(domain)
        urgency = determine_urgency(domain, state.has_time_constraint)
        info = build_escalation_info(targets, domain, urgency, state.escalation_reason)

        try:
            referral = await compose_referral(
                self.gateway,
                targets,
                domain,
                urgency,
                state.escalation_reason,
                state.latest_user_message(),
            )
        except Exception as e:
            logger.error("escalate referral failed", error=str(e), trace_id=state.trace_id)
            referral = build_referral_message(targets, domain, urgency)

        logger.info(
            "escalate completed",
            target=info.target,
            urgency=urgency,
            domain=domain,
            trace_id=state.trace_id,
        )
        return {"answer": with_empathy(referral, state.emotional_state), "escalation": info}

    async def _citation_builder_node(self, state: ConversationState, emit: Optional[EventSink] = None) -> Dict[str, Any]:
        """Citations from retrieved documents, deduplicated by url, section and title."""
        citations = []
        seen = set()
        for doc in state.retrieved_documents:
            meta = doc.metadata
            key = f"{meta.source_url or ''}|{meta.section_title or ''}|{meta.document_title or ''}"
            if key in seen:
                continue
            seen.add(key)

            snippet = doc.content[:SNIPPET_CHARS]
            if len(doc.content) > SNIPPET_CHARS:
                snippet += "..."
            citations.append(
                Citation(
                    title=meta.document_title or "Unknown Document",
                    section=meta.section_title,
                    url=meta.source_url,
                    authority_level=meta.authority_level,
                    document_type=meta.document_type or "document",
                    effective_date=meta.effective_date,
                    snippet=snippet,
                )
            )

        logger.info("Citations built", count=len(citations), trace_id=state.trace_id)
        return {"citations": citations}

    async def _disclaimer_guard_node(self, state: ConversationState, emit: Optional[EventSink] = None) -> Dict[str, Any]:
        if not state.answer:
            return {}
        return {"answer": append_disclaimer(state.answer, state.topic_domain), "disclaimer_required": True}

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run_stage(self, stage: Stage, state: ConversationState, emit: Optional[EventSink]) -> None:
        start_time = time.time()
        updates = await self.nodes[stage](state, emit)

        for field, value in updates.items():
            setattr(state, field, value)

        duration_ms = (time.time() - start_time) * 1000
        state.add_timing(stage.value, round(duration_ms, 2))
        state.trajectory.append(stage.value)
        logger.debug("Stage completed", stage=stage.value, duration_ms=round(duration_ms, 2), trace_id=state.trace_id)

        if emit is not None:
            await emit(StageEvent.snapshot(stage.value, state))

    async def _execute(self, state: ConversationState, emit: Optional[EventSink] = None) -> ConversationState:
        stage = Stage.CLASSIFIER
        steps = 0
        while stage is not Stage.END:
            steps += 1
            if steps > MAX_STAGE_STEPS:
                logger.error("Stage limit exceeded", trajectory=state.trajectory, trace_id=state.trace_id)
                break
            await self._run_stage(stage, state, emit)
            stage = next_stage(stage, state, self.settings)
        return state

    async def _load_summary(self, state: ConversationState) -> None:
        if state.conversation_summary or not state.conversation_id or self.summary_store is None:
            return
        if not self.settings.feature_conversation_memory:
            return
        try:
            state.conversation_summary = await self.summary_store.get(state.conversation_id)
        except Exception as e:
            logger.warning("Summary load failed", error=str(e), conversation_id=state.conversation_id)

    def _schedule_summary_update(self, state: ConversationState) -> None:
        """Extend the rolling summary in the background."""
        if self.summarizer is None or not state.conversation_id or not self.settings.feature_conversation_memory:
            return

        messages = list(state.messages)
        if state.answer:
            messages.append(ChatMessage(role="assistant", content=state.answer))

        task = asyncio.create_task(self.summarizer.update(state.conversation_id, messages))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def drain(self) -> None:
        """Wait for background summary updates; used at shutdown and in tests."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def invoke(self, state: ConversationState) -> ConversationState:
        """Run a turn to completion and return the final state.

        A stage failure that escapes its node ends the turn with the
        synthesis error answer instead of raising.
        """
        logger.info(
            "Starting query orchestration",
            trace_id=state.trace_id,
            conversation_id=state.conversation_id,
            query_preview=state.latest_user_message()[:50],
        )
        await self._load_summary(state)
        try:
            result = await self._execute(state)
        except Exception as e:
            logger.error(
                "Query orchestration failed",
                error=str(e),
                error_type=type(e).__name__,
                trajectory=state.trajectory,
                trace_id=state.trace_id,
                exc_info=True,
            )
            state.answer = SYNTHESIS_ERROR_ANSWER
            return state
        self._schedule_summary_update(result)

        logger.info(
            "Query orchestration completed",
            trajectory=result.trajectory,
            answer_length=len(result.answer or ""),
            escalated=result.escalation is not None,
            trace_id=state.trace_id,
        )
        return result

    async def _stage_events(self, state: ConversationState) -> AsyncIterator[StageEvent]:
        """Run the turn in a producer task and yield its events from a bounded queue."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.settings.stream_queue_size)

        async def produce() -> None:
            try:
                await self._load_summary(state)
                await self._execute(state, emit=queue.put)
                self._schedule_summary_update(state)
                await queue.put(_STREAM_END)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await queue.put(e)

        producer = asyncio.create_task(produce())
        try:
            while True:
                item = await queue.get()
                if item is _STREAM_END:
                    break
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            if not producer.done():
                producer.cancel()
                logger.info("Stream closed early, cancelling turn", trace_id=state.trace_id)
            try:
                await producer
            except asyncio.CancelledError:
                pass

    async def stream(self, state: ConversationState) -> AsyncIterator[StreamEvent]:
        """Run a turn and yield caller-facing stream events."""
        logger.info("Starting streamed orchestration", trace_id=state.trace_id, conversation_id=state.conversation_id)
        events = adapt_stream(self._stage_events(state), self.settings)
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()


AgentRunner = QueryOrchestrator


def create_orchestrator(
    settings: Settings,
    vector_store,
    breakers=None,
    web_search_client=None,
    models: Optional[Dict[str, Any]] = None,
    summary_store: Optional[SummaryStore] = None,
) -> QueryOrchestrator:
    """Wire an orchestrator from its collaborators.

    ``models`` maps gateway roles to chat models and is mainly used by tests
    to inject fakes.
    """
    from agent.tools.retrieval_engine import RetrievalConfig
    from agent.tools.web_search import TavilySearchClient
    from libs.resilience.circuit_breaker import CircuitBreakerRegistry

    breakers = breakers or CircuitBreakerRegistry.from_settings(settings)
    gateway = LLMGateway(settings, breakers, models=models)

    if web_search_client is None and settings.tavily_api_key:
        web_search_client = TavilySearchClient(settings.tavily_api_key)

    summarizer = None
    if summary_store is not None:
        summarizer = ConversationSummarizer(gateway, summary_store, transcript_turns=settings.max_history_turns)

    return QueryOrchestrator(
        settings=settings,
        gateway=gateway,
        retrieval=RetrievalEngine(vector_store, breakers, RetrievalConfig.from_settings(settings), gateway=gateway),
        researcher=WebResearcher(web_search_client, breakers, max_results=settings.web_search_max_results),
        summary_store=summary_store,
        summarizer=summarizer,
    )
