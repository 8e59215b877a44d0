"""Error taxonomy shared by the agent pipeline and its resilience layer.

Dependency-level errors are caught at stage boundaries and turned into a
degraded state transition. Only ConfigurationError is allowed to escape, and
only during process start-up.
"""

from __future__ import annotations

from typing import Optional


class AgentError(Exception):
    """Base class for all agent errors."""


class ConfigurationError(AgentError):
    """Required configuration is missing or invalid. Fatal at start-up."""


class ClassificationError(AgentError):
    """The classifier could not produce a usable classification."""


class RetrievalError(AgentError):
    """The vector store search failed."""


class CircuitOpenError(AgentError):
    """A dependency breaker is open and the call was rejected without trying."""

    def __init__(self, name: str, retry_after: Optional[float] = None):
        self.name = name
        self.retry_after = retry_after
        message = f"Circuit '{name}' is open"
        if retry_after is not None:
            message += f"; retry in {retry_after:.1f}s"
        super().__init__(message)


class OperationTimeoutError(AgentError, TimeoutError):
    """An external call exceeded its configured timeout."""

    def __init__(self, operation_name: str, timeout: float):
        self.operation_name = operation_name
        self.timeout = timeout
        super().__init__(f"{operation_name} timed out after {timeout:.1f}s")


class LLMParseError(AgentError):
    """LLM output could not be decoded as JSON."""


class QualityGradeParseError(LLMParseError):
    """Grader output was not a usable grade. Never surfaced; the gate fails open."""


class EscalationDataMissingError(AgentError):
    """No escalation targets exist for a domain. Never surfaced; falls back to the Ombuds."""

    def __init__(self, domain: Optional[str]):
        self.domain = domain
        super().__init__(f"No escalation targets for domain '{domain}'")
