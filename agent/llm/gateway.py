"""Circuit-broken access to chat models.

Every LLM call made by a stage goes through LLMGateway so that it shares the
process-wide ``llm`` breaker, is bounded by the breaker's per-call timeout and
gets one retry on transient provider errors.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage
from langchain_openai import ChatOpenAI

from libs.common.settings import Settings
from libs.resilience.circuit_breaker import LLM, CircuitBreakerRegistry
from libs.resilience.retry import transient_retry

logger = structlog.get_logger(__name__)

ModelRole = Literal["agent", "classifier", "utility"]
TokenSink = Callable[[str], Awaitable[None]]


def message_text(message: Any) -> str:
    """Plain text of a chat message or chunk (string or content-block list)."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


class LLMGateway:
    """Chat models by role, wrapped with the shared ``llm`` breaker."""

    def __init__(
        self,
        settings: Settings,
        breakers: CircuitBreakerRegistry,
        models: Optional[Dict[str, BaseChatModel]] = None,
    ):
        self.settings = settings
        self.breakers = breakers
        self._models: Dict[str, BaseChatModel] = dict(models or {})

    def get_model(self, role: ModelRole) -> BaseChatModel:
        """Lazy-initialise the ChatOpenAI client for a role."""
        if role not in self._models:
            if role == "agent":
                model_name, temperature = self.settings.agent_model, self.settings.agent_temperature
            elif role == "classifier":
                model_name, temperature = self.settings.classifier_model, 0.0
            else:
                model_name, temperature = self.settings.utility_model, 0.0

            self._models[role] = ChatOpenAI(
                model=model_name,
                temperature=temperature,
                max_tokens=self.settings.agent_max_tokens,
                api_key=self.settings.openai_api_key,
                streaming=role == "agent",
            )
            logger.info("Chat model initialised", role=role, model=model_name)
        return self._models[role]

    async def ainvoke(self, messages: List[BaseMessage], role: ModelRole = "utility") -> str:
        """Full-response call.

        Raises:
            CircuitOpenError: the llm breaker is open
            OperationTimeoutError: the call exceeded the breaker timeout
        """
        model = self.get_model(role)

        @transient_retry
        async def _call() -> str:
            response = await model.ainvoke(messages)
            return message_text(response)

        return await self.breakers.get(LLM).call(_call)

    async def astream(
        self,
        messages: List[BaseMessage],
        on_token: Optional[TokenSink] = None,
        role: ModelRole = "agent",
    ) -> str:
        """Token-streaming call; returns the full text once the stream ends.

        Not retried, since tokens may already have reached the caller.
        """
        model = self.get_model(role)

        async def _stream() -> str:
            parts: List[str] = []
            async for chunk in model.astream(messages):
                text = message_text(chunk)
                if not text:
                    continue
                parts.append(text)
                if on_token is not None:
                    await on_token(text)
            return "".join(parts)

        return await self.breakers.get(LLM).call(_stream)
