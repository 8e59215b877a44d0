"""
Pytest configuration and fixtures for the athlete agent tests.

Provides shared fixtures for:
- Test-mode settings
- Mock Redis client (fakeredis)
- In-process vector store and scripted chat models
- Common document and state builders
"""

import json
from typing import Any, Dict, List, Optional

import pytest
from langchain_core.documents import Document
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from agent.schemas.agent_state import DocumentMetadata, RetrievedDocument
from libs.common.settings import Settings, get_settings


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Run every test in test mode with a fresh settings cache."""
    monkeypatch.setenv("AGENT_APP_ENV", "test")
    monkeypatch.delenv("AGENT_REDIS_URL", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(app_env="test")


@pytest.fixture
async def redis_client():
    """
    Provide fakeredis client for testing.

    This avoids requiring an actual Redis server during tests.
    """
    from fakeredis import aioredis as fakeredis

    client = fakeredis.FakeRedis(decode_responses=True)

    yield client

    await client.flushdb()
    await client.aclose()


class FakeVectorStore:
    """Vector store double that serves canned hits and records every search."""

    def __init__(self, hits: Optional[List[tuple]] = None, by_filter: Optional[Dict[str, List[tuple]]] = None):
        self.hits = hits or []
        self.by_filter = by_filter or {}
        self.calls: List[Dict[str, Any]] = []

    async def asimilarity_search_with_score(self, query: str, k: int = 4, filter: Optional[dict] = None):
        self.calls.append({"query": query, "k": k, "filter": filter})
        key = json.dumps(filter, sort_keys=True)
        hits = self.by_filter.get(key, self.hits)
        return list(hits)[:k]


def make_hit(content: str, score: float, **metadata) -> tuple:
    return Document(page_content=content, metadata=metadata), score


def make_doc(content: str, score: float, **metadata) -> RetrievedDocument:
    return RetrievedDocument(content=content, score=score, metadata=DocumentMetadata(**metadata))


def scripted_models(classifier: List[str], agent: List[str], utility: Optional[List[str]] = None) -> Dict[str, Any]:
    """Chat models per gateway role, each replaying its responses in order."""
    return {
        "classifier": FakeListChatModel(responses=classifier),
        "agent": FakeListChatModel(responses=agent),
        "utility": FakeListChatModel(responses=utility or ['{"passed": true, "score": 0.9, "issues": [], "critique": ""}']),
    }


@pytest.fixture
def fake_vector_store():
    return FakeVectorStore


@pytest.fixture
def hit():
    return make_hit


@pytest.fixture
def doc():
    return make_doc


@pytest.fixture
def models():
    return scripted_models
