"""
Translate internal pipeline events into caller-facing stream events.

The pipeline produces two kinds of internal events: answer tokens from the
synthesizer and a state snapshot after every stage. The adapter turns them
into ``text-delta``, ``citations``, ``escalation``, ``status``,
``discovered-urls``, ``error`` and ``done`` events with these guarantees:

- answer text is only ever emitted as a suffix of what was already sent
- citations and escalation are each emitted at most once
- web search urls are sent once, just before ``done``, and never after an error
- exactly one ``done`` closes the stream, after an ``error`` if one occurred

Synthesizer tokens are held back until the quality gate has decided on the
draft. A draft that will be re-synthesized is discarded unseen.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, List, Literal, Optional

import structlog

from agent.orchestrators.routing import Stage
from agent.schemas.agent_state import ConversationState, StreamEvent
from libs.common.settings import Settings

logger = structlog.get_logger(__name__)

STREAMING_STAGES = {Stage.SYNTHESIZER.value}
GENERIC_STREAM_ERROR = "An unexpected error occurred while generating the response."


@dataclass
class StageEvent:
    """Internal event produced while a turn runs."""

    kind: Literal["token", "snapshot"]
    stage: str
    text: str = ""
    state: Optional[ConversationState] = None

    @classmethod
    def token(cls, stage: str, text: str) -> "StageEvent":
        return cls(kind="token", stage=stage, text=text)

    @classmethod
    def snapshot(cls, stage: str, state: ConversationState) -> "StageEvent":
        return cls(kind="snapshot", stage=stage, state=state.model_copy(deep=True))


class StreamAdapter:
    """Stateful translator for one turn; not reusable across turns."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.sent_answer = ""
        self.pending: List[str] = []
        self.citations_sent = False
        self.escalation_sent = False
        self.discovered_urls: List[str] = []

    def _flush(self) -> List[StreamEvent]:
        events = []
        for text in self.pending:
            if text:
                self.sent_answer += text
                events.append(StreamEvent(type="text-delta", text=text))
        self.pending = []
        return events

    def _draft_is_final(self, state: ConversationState) -> bool:
        result = state.quality_check_result
        if result is None or result.passed:
            return True
        return state.quality_retry_count >= self.settings.quality_max_retries

    def on_token(self, event: StageEvent) -> List[StreamEvent]:
        if event.stage in STREAMING_STAGES and event.text:
            self.pending.append(event.text)
        return []

    def on_snapshot(self, event: StageEvent) -> List[StreamEvent]:
        state = event.state
        events: List[StreamEvent] = [StreamEvent(type="status", stage=event.stage)]
        if state is None:
            return events

        if event.stage == Stage.SYNTHESIZER.value:
            # The snapshot is authoritative when tokens and final answer disagree
            answer = state.answer or ""
            if "".join(self.pending) != answer:
                self.pending = [answer] if answer else []
        elif event.stage == Stage.QUALITY_CHECKER.value:
            if self._draft_is_final(state):
                events.extend(self._flush())
            else:
                logger.info("Discarding draft pending re-synthesis", retry_count=state.quality_retry_count)
                self.pending = []
        elif self.pending:
            events.extend(self._flush())

        if not self.pending and state.answer:
            if state.answer.startswith(self.sent_answer):
                delta = state.answer[len(self.sent_answer):]
                if delta:
                    self.sent_answer = state.answer
                    events.append(StreamEvent(type="text-delta", text=delta))
            else:
                logger.warning("Answer diverged from streamed text", stage=event.stage)

        if not self.citations_sent and state.citations:
            self.citations_sent = True
            events.append(StreamEvent(type="citations", citations=state.citations))

        if not self.escalation_sent and state.escalation is not None:
            self.escalation_sent = True
            events.append(StreamEvent(type="escalation", escalation=state.escalation))

        if state.web_search_result_urls:
            self.discovered_urls = list(state.web_search_result_urls)

        return events

    async def adapt(self, source: AsyncIterator[StageEvent]) -> AsyncIterator[StreamEvent]:
        """Consume ``source`` to exhaustion and yield caller events."""
        error: Optional[str] = None
        try:
            try:
                async for event in source:
                    handler = self.on_token if event.kind == "token" else self.on_snapshot
                    for out in handler(event):
                        yield out
            except Exception as e:
                logger.error("Stream source failed", error=str(e), error_type=type(e).__name__)
                error = GENERIC_STREAM_ERROR

            for out in self._flush():
                yield out
            if error is not None:
                yield StreamEvent(type="error", error=error)
            elif self.discovered_urls:
                yield StreamEvent(type="discovered-urls", discovered_urls=self.discovered_urls)
            yield StreamEvent(type="done")
        finally:
            # Closing early must reach the producer so the turn is cancelled
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()


def adapt_stream(source: AsyncIterator[StageEvent], settings: Settings) -> AsyncIterator[StreamEvent]:
    return StreamAdapter(settings).adapt(source)
