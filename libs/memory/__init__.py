"""
Conversation memory.

Provides:
- Context windowing (recent turns as a role-prefixed transcript)
- Rolling summary store (Redis with an in-memory fallback)
"""

from libs.memory.conversation_context import build_contextual_query, format_conversation_history
from libs.memory.summary_store import InMemorySummaryStore, RedisSummaryStore, SummaryStore, create_summary_store

__all__ = [
    "build_contextual_query",
    "format_conversation_history",
    "SummaryStore",
    "RedisSummaryStore",
    "InMemorySummaryStore",
    "create_summary_store",
]
