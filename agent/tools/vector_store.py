"""pgvector-backed store for governance document chunks.

Query embeddings go through the ``embeddings`` circuit breaker; searches are
wrapped with ``vector_store_read`` by the retrieval engine.
"""

from typing import List

import structlog
from langchain_core.embeddings import Embeddings
from langchain_openai import OpenAIEmbeddings
from langchain_postgres import PGVector

from libs.common.errors import ConfigurationError
from libs.common.settings import Settings
from libs.resilience.circuit_breaker import EMBEDDINGS, CircuitBreakerRegistry

logger = structlog.get_logger(__name__)


class BreakerEmbeddings(Embeddings):
    """Embeddings whose async calls share the ``embeddings`` breaker."""

    def __init__(self, inner: Embeddings, breakers: CircuitBreakerRegistry):
        self.inner = inner
        self.breakers = breakers

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return self.inner.embed_documents(texts)

    def embed_query(self, text: str) -> List[float]:
        return self.inner.embed_query(text)

    async def aembed_documents(self, texts: List[str]) -> List[List[float]]:
        return await self.breakers.get(EMBEDDINGS).call(self.inner.aembed_documents, texts)

    async def aembed_query(self, text: str) -> List[float]:
        return await self.breakers.get(EMBEDDINGS).call(self.inner.aembed_query, text)


def to_psycopg_url(database_url: str) -> str:
    """SQLAlchemy URL using the psycopg 3 driver."""
    for prefix in ("postgresql+psycopg://", "postgresql://", "postgres://"):
        if database_url.startswith(prefix):
            return "postgresql+psycopg://" + database_url[len(prefix):]
    return database_url


def create_vector_store(settings: Settings, breakers: CircuitBreakerRegistry) -> PGVector:
    """
    Build the async PGVector store from settings.

    Raises:
        ConfigurationError: database URL is not configured
    """
    if not settings.database_url:
        raise ConfigurationError("AGENT_DATABASE_URL is required for the vector store")

    embeddings = BreakerEmbeddings(
        OpenAIEmbeddings(model=settings.embedding_model, api_key=settings.openai_api_key),
        breakers,
    )
    store = PGVector(
        embeddings=embeddings,
        collection_name=settings.vector_collection,
        connection=to_psycopg_url(settings.database_url),
        use_jsonb=True,
        async_mode=True,
    )
    logger.info("Vector store initialised", collection=settings.vector_collection)
    return store
