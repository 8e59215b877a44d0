"""Shared libraries for the athlete governance agent.

This package contains reusable components:
- common: Settings, error types and logging configuration
- resilience: Circuit breakers and transient-error retry
- memory: Conversation context windowing and the rolling summary store
- caching: Redis client management
"""
