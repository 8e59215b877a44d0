"""
Persisted rolling conversation summaries.

Keyed by conversation id, so concurrent conversations never contend. Two
implementations share the ``get``/``upsert`` contract:
- RedisSummaryStore: production, values expire after the configured TTL
- InMemorySummaryStore: single-process fallback with the same TTL semantics
"""

from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol, Tuple

import structlog

from libs.caching.redis_client import get_redis_client
from libs.common.settings import Settings

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 3600


class SummaryStore(Protocol):
    async def get(self, conversation_id: str) -> Optional[str]: ...

    async def upsert(self, conversation_id: str, summary: str) -> None: ...


class RedisSummaryStore:
    """
    Conversation summaries in Redis.

    Usage:
        store = RedisSummaryStore(redis_client, ttl_seconds=3600)
        await store.upsert("conv-1", "Athlete asked about Section 9...")
        summary = await store.get("conv-1")
    """

    def __init__(self, redis_client, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(conversation_id: str) -> str:
        return f"conversation:{conversation_id}:summary"

    async def get(self, conversation_id: str) -> Optional[str]:
        raw = await self.redis.get(self._key(conversation_id))
        if raw is None:
            return None
        return json.loads(raw).get("summary")

    async def upsert(self, conversation_id: str, summary: str) -> None:
        payload = {"summary": summary, "updated_at": datetime.now(timezone.utc).isoformat()}
        await self.redis.set(self._key(conversation_id), json.dumps(payload), ex=self.ttl_seconds)
        logger.debug("Conversation summary stored", conversation_id=conversation_id, length=len(summary))


class InMemorySummaryStore:
    """Process-local summaries; expired entries are dropped on read and on every write."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    async def get(self, conversation_id: str) -> Optional[str]:
        async with self._lock:
            entry = self._entries.get(conversation_id)
            if entry is None:
                return None
            summary, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[conversation_id]
                return None
            return summary

    async def upsert(self, conversation_id: str, summary: str) -> None:
        async with self._lock:
            now = self._clock()
            expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
            self._entries[conversation_id] = (summary, now + self.ttl_seconds)


async def create_summary_store(settings: Settings) -> SummaryStore:
    """Redis-backed store when Redis is reachable, in-memory otherwise."""
    client = await get_redis_client()
    if client is not None:
        return RedisSummaryStore(client, ttl_seconds=settings.summary_ttl_seconds)
    return InMemorySummaryStore(ttl_seconds=settings.summary_ttl_seconds)
