"""Tests for vector store wiring."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from agent.tools.vector_store import BreakerEmbeddings, create_vector_store, to_psycopg_url
from libs.common.errors import CircuitOpenError, ConfigurationError
from libs.resilience.circuit_breaker import EMBEDDINGS, CircuitBreakerRegistry


@pytest.mark.parametrize(
    "url,expected",
    [
        ("postgresql://u:p@db:5432/agent", "postgresql+psycopg://u:p@db:5432/agent"),
        ("postgres://u:p@db/agent", "postgresql+psycopg://u:p@db/agent"),
        ("postgresql+psycopg://db/agent", "postgresql+psycopg://db/agent"),
    ],
)
def test_to_psycopg_url(url, expected):
    assert to_psycopg_url(url) == expected


def test_missing_database_url_is_configuration_error(settings):
    with pytest.raises(ConfigurationError):
        create_vector_store(settings, CircuitBreakerRegistry.from_settings(settings))


class TestBreakerEmbeddings:
    @pytest.fixture
    def inner(self):
        mock = MagicMock()
        mock.aembed_query = AsyncMock(return_value=[0.1, 0.2])
        mock.embed_query.return_value = [0.3]
        return mock

    async def test_async_query_goes_through_breaker(self, inner, settings):
        breakers = CircuitBreakerRegistry.from_settings(settings)
        embeddings = BreakerEmbeddings(inner, breakers)

        assert await embeddings.aembed_query("selection") == [0.1, 0.2]
        assert breakers.get(EMBEDDINGS).metrics().total_requests == 1

    async def test_open_breaker_rejects(self, inner, settings):
        breakers = CircuitBreakerRegistry.from_settings(settings)
        breakers.get(EMBEDDINGS).trip()

        with pytest.raises(CircuitOpenError):
            await BreakerEmbeddings(inner, breakers).aembed_query("selection")

        inner.aembed_query.assert_not_awaited()

    def test_sync_calls_delegate(self, inner, settings):
        embeddings = BreakerEmbeddings(inner, CircuitBreakerRegistry.from_settings(settings))
        assert embeddings.embed_query("x") == [0.3]
