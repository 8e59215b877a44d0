"""Circuit-broken chat model access."""

from .gateway import LLMGateway, message_text

__all__ = ["LLMGateway", "message_text"]
