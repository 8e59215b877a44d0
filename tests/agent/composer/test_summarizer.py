"""Tests for rolling conversation summaries."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from agent.composer.summarizer import ConversationSummarizer
from agent.schemas.agent_state import ChatMessage
from libs.memory.summary_store import InMemorySummaryStore


@pytest.fixture
def gateway():
    mock = MagicMock()
    mock.ainvoke = AsyncMock(return_value="Athlete swims for USA Swimming and asked about selection.")
    return mock


@pytest.fixture
def messages():
    return [
        ChatMessage(role="user", content="How does selection work for swimming?"),
        ChatMessage(role="assistant", content="Athletes are ranked by time at the selection meet."),
    ]


class TestConversationSummarizer:
    async def test_first_summary_stored(self, gateway, messages):
        store = InMemorySummaryStore()
        summarizer = ConversationSummarizer(gateway, store)

        summary = await summarizer.update("conv-1", messages)

        assert summary == "Athlete swims for USA Swimming and asked about selection."
        assert await store.get("conv-1") == summary
        prompt = gateway.ainvoke.await_args.args[0][-1].content
        assert "<existing_summary>" not in prompt
        assert "User: How does selection work for swimming?" in prompt

    async def test_existing_summary_extended(self, gateway, messages):
        store = InMemorySummaryStore()
        await store.upsert("conv-1", "Earlier: asked about anti-doping.")

        await ConversationSummarizer(gateway, store).update("conv-1", messages)

        prompt = gateway.ainvoke.await_args.args[0][-1].content
        assert "<existing_summary>\nEarlier: asked about anti-doping.\n</existing_summary>" in prompt

    async def test_failure_keeps_existing_summary(self, gateway, messages):
        store = InMemorySummaryStore()
        await store.upsert("conv-1", "Earlier summary.")
        gateway.ainvoke.side_effect = RuntimeError("llm down")

        summary = await ConversationSummarizer(gateway, store).update("conv-1", messages)

        assert summary == "Earlier summary."
        assert await store.get("conv-1") == "Earlier summary."

    async def test_no_messages_no_call(self, gateway):
        summary = await ConversationSummarizer(gateway, InMemorySummaryStore()).summarize([], None)

        assert summary is None
        gateway.ainvoke.assert_not_awaited()

    async def test_store_failure_does_not_raise(self, gateway, messages):
        store = MagicMock()
        store.get = AsyncMock(side_effect=ConnectionError("redis gone"))
        store.upsert = AsyncMock(side_effect=ConnectionError("redis gone"))

        summary = await ConversationSummarizer(gateway, store).update("conv-1", messages)

        assert summary == "Athlete swims for USA Swimming and asked about selection."
        store.upsert.assert_awaited_once()
