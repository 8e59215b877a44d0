"""
Rolling conversation summaries.

Runs after a turn has been answered, never on the answer path. The summary
extends any existing one with the latest exchange and is persisted per
conversation, so later turns can send a short summary plus two recent turns
instead of the whole transcript.
"""

from __future__ import annotations

from typing import Any, List, Optional

import structlog

from agent.composer.prompts import SUMMARY_TEMPLATE
from agent.llm.gateway import LLMGateway
from libs.memory.conversation_context import format_conversation_history
from libs.memory.summary_store import SummaryStore

logger = structlog.get_logger(__name__)


class ConversationSummarizer:
    """
    Extends and persists the rolling summary for a conversation.

    Usage:
        summarizer = ConversationSummarizer(gateway, store)
        await summarizer.update("conv-1", state.messages)
    """

    def __init__(self, gateway: LLMGateway, store: SummaryStore, transcript_turns: int = 5):
        self.gateway = gateway
        self.store = store
        self.transcript_turns = transcript_turns

    async def summarize(self, messages: List[Any], existing_summary: Optional[str] = None) -> Optional[str]:
        """
        Produce a summary covering ``existing_summary`` plus ``messages``.

        Returns:
            The new summary, or the existing one if generation fails
        """
        if not messages:
            return existing_summary

        existing_block = ""
        if existing_summary:
            existing_block = (
                f"<existing_summary>\n{existing_summary}\n</existing_summary>\n\n"
                "Update and extend this summary with the new messages below.\n\n"
            )

        transcript = format_conversation_history(messages, max_turns=self.transcript_turns, max_chars=2000)
        prompt = SUMMARY_TEMPLATE.format_messages(existing_block=existing_block, transcript=transcript)

        try:
            summary = (await self.gateway.ainvoke(prompt, role="utility")).strip()
        except Exception as e:
            logger.warning("Summary generation failed, keeping existing summary", error=str(e))
            return existing_summary

        if not summary:
            return existing_summary

        logger.debug(
            "Conversation summarized",
            message_count=len(messages),
            summary_chars=len(summary),
            extended=existing_summary is not None,
        )
        return summary

    async def update(self, conversation_id: str, messages: List[Any]) -> Optional[str]:
        """Load, extend and store the summary for one conversation."""
        try:
            existing = await self.store.get(conversation_id)
        except Exception as e:
            logger.warning("Summary load failed", conversation_id=conversation_id, error=str(e))
            existing = None

        summary = await self.summarize(messages, existing)
        if summary and summary != existing:
            try:
                await self.store.upsert(conversation_id, summary)
            except Exception as e:
                logger.warning("Summary store failed", conversation_id=conversation_id, error=str(e))
        return summary
