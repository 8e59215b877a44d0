"""Circuit breakers for the agent's external dependencies.

One breaker exists per dependency (LLM, embeddings, vector store read/write,
web search). Breakers live in a registry that is built once at process start
and handed to every stage, so concurrent turns share the same counters.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple, TypeVar

import structlog
from pydantic import BaseModel, Field

from libs.common.errors import CircuitOpenError, OperationTimeoutError
from libs.common.settings import CircuitBreakerConfig, Settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

LLM = "llm"
EMBEDDINGS = "embeddings"
VECTOR_STORE_READ = "vector_store_read"
VECTOR_STORE_WRITE = "vector_store_write"
WEB_SEARCH = "web_search"


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing fast
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitBreakerMetrics(BaseModel):
    """Point-in-time counters for one breaker."""

    name: str
    state: CircuitState
    consecutive_failures: int = 0
    total_requests: int = 0
    total_failures: int = 0
    total_timeouts: int = 0
    total_rejections: int = 0
    last_failure_time: Optional[float] = Field(
        default=None, description="Unix timestamp of the most recent failure"
    )


class CircuitBreaker:
    """Async circuit breaker with a per-call timeout.

    States:
    - CLOSED: calls pass through, consecutive failures are counted
    - OPEN: calls rejected with CircuitOpenError until reset_timeout elapses
    - HALF_OPEN: up to half_open_max_calls trial calls in flight at once

    Transitions:
    - CLOSED -> OPEN: failure_threshold consecutive failures, or the failure
      rate over the rolling window reaching error_rate_threshold
    - OPEN -> HALF_OPEN: reset_timeout seconds after opening
    - HALF_OPEN -> CLOSED: success_threshold successful trial calls
    - HALF_OPEN -> OPEN: any trial failure
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.error_rate_threshold = self.config.error_rate_threshold
        self.rolling_window = self.config.rolling_window
        self.minimum_calls = self.config.minimum_calls
        self._clock = clock
        self._lock = asyncio.Lock()

        self._state = CircuitState.CLOSED
        self._opened_at: Optional[float] = None
        self._half_open_calls = 0
        self._half_open_successes = 0
        self._outcomes: Deque[Tuple[float, bool]] = deque()

        self._consecutive_failures = 0
        self._total_requests = 0
        self._total_failures = 0
        self._total_timeouts = 0
        self._total_rejections = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN -> HALF_OPEN once the cooldown is over."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.config.reset_timeout:
                logger.info("Circuit half-open", breaker=self.name)
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0
                self._half_open_successes = 0
        return self._state

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``func`` under breaker protection and the configured timeout.

        Raises:
            CircuitOpenError: the breaker is open, ``func`` was not called
            OperationTimeoutError: ``func`` exceeded ``config.call_timeout``
        """
        await self._acquire()

        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.config.call_timeout)
        except asyncio.CancelledError:
            await self._release_cancelled()
            raise
        except asyncio.TimeoutError:
            await self._on_failure(timed_out=True)
            raise OperationTimeoutError(self.name, self.config.call_timeout) from None
        except Exception:
            await self._on_failure()
            raise

        await self._on_success()
        return result

    async def call_with_fallback(
        self,
        func: Callable[..., Awaitable[T]],
        fallback: T,
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Like ``call`` but return ``fallback`` on rejection, timeout or failure."""
        try:
            return await self.call(func, *args, **kwargs)
        except CircuitOpenError:
            logger.warning("Circuit open, using fallback", breaker=self.name)
            return fallback
        except Exception as e:
            logger.warning("Call failed, using fallback", breaker=self.name, error=str(e))
            return fallback

    async def _acquire(self) -> None:
        async with self._lock:
            self._total_requests += 1
            current = self.state

            if current == CircuitState.OPEN:
                self._total_rejections += 1
                logger.warning("Circuit open, rejecting call", breaker=self.name)
                raise CircuitOpenError(self.name, retry_after=self._retry_after())

            if current == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    self._total_rejections += 1
                    logger.warning("Half-open trial limit reached, rejecting call", breaker=self.name)
                    raise CircuitOpenError(self.name)
                self._half_open_calls += 1

    async def _release_cancelled(self) -> None:
        # A cancelled trial call gives its slot back; nothing else changes.
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
                self._half_open_calls -= 1

    async def _on_success(self) -> None:
        async with self._lock:
            self._record_outcome(True)
            if self._state == CircuitState.HALF_OPEN:
                # A finished trial frees its slot for the next one
                self._half_open_calls = max(0, self._half_open_calls - 1)
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.success_threshold:
                    logger.info("Circuit closed", breaker=self.name)
                    self._close()
            else:
                self._consecutive_failures = 0

    async def _on_failure(self, timed_out: bool = False) -> None:
        async with self._lock:
            self._record_outcome(False)
            self._consecutive_failures += 1
            self._total_failures += 1
            if timed_out:
                self._total_timeouts += 1
            self._last_failure_time = time.time()

            if self._state == CircuitState.HALF_OPEN:
                logger.warning("Trial call failed, circuit re-opened", breaker=self.name)
                self._open()
            elif self._state == CircuitState.CLOSED and self._should_open():
                logger.warning(
                    "Circuit opened",
                    breaker=self.name,
                    consecutive_failures=self._consecutive_failures,
                    failure_threshold=self.config.failure_threshold,
                )
                self._open()

    def _should_open(self) -> bool:
        if self._consecutive_failures >= self.config.failure_threshold:
            return True
        if self.error_rate_threshold is None or len(self._outcomes) < self.minimum_calls:
            return False
        failures = sum(1 for _, ok in self._outcomes if not ok)
        return failures / len(self._outcomes) >= self.error_rate_threshold

    def _record_outcome(self, ok: bool) -> None:
        now = self._clock()
        self._outcomes.append((now, ok))
        while self._outcomes and now - self._outcomes[0][0] > self.rolling_window:
            self._outcomes.popleft()

    def _retry_after(self) -> Optional[float]:
        if self._opened_at is None:
            return None
        return max(0.0, self.config.reset_timeout - (self._clock() - self._opened_at))

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._half_open_calls = 0
        self._half_open_successes = 0

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._opened_at = None
        self._consecutive_failures = 0
        self._half_open_calls = 0
        self._half_open_successes = 0
        self._outcomes.clear()

    def trip(self) -> None:
        """Force the breaker open (ops/test action)."""
        logger.warning("Circuit manually tripped", breaker=self.name)
        self._open()

    def reset(self) -> None:
        """Return to CLOSED and zero every counter (ops/test action)."""
        logger.info("Circuit manually reset", breaker=self.name)
        self._close()
        self._total_requests = 0
        self._total_failures = 0
        self._total_timeouts = 0
        self._total_rejections = 0
        self._last_failure_time = None

    def metrics(self) -> CircuitBreakerMetrics:
        return CircuitBreakerMetrics(
            name=self.name,
            state=self.state,
            consecutive_failures=self._consecutive_failures,
            total_requests=self._total_requests,
            total_failures=self._total_failures,
            total_timeouts=self._total_timeouts,
            total_rejections=self._total_rejections,
            last_failure_time=self._last_failure_time,
        )


class CircuitBreakerRegistry:
    """Process-wide set of named breakers, built once and injected into stages."""

    def __init__(self, configs: Optional[Dict[str, CircuitBreakerConfig]] = None):
        self._configs = dict(configs or {})
        self._breakers: Dict[str, CircuitBreaker] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "CircuitBreakerRegistry":
        return cls(
            {
                LLM: settings.llm_breaker,
                EMBEDDINGS: settings.embeddings_breaker,
                VECTOR_STORE_READ: settings.vector_store_read_breaker,
                VECTOR_STORE_WRITE: settings.vector_store_write_breaker,
                WEB_SEARCH: settings.web_search_breaker,
            }
        )

    def get(self, name: str) -> CircuitBreaker:
        """Return the breaker for ``name``, creating it on first use."""
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, self._configs.get(name))
            self._breakers[name] = breaker
        return breaker

    def all_metrics(self) -> Dict[str, CircuitBreakerMetrics]:
        for name in self._configs:
            self.get(name)
        return {name: breaker.metrics() for name, breaker in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
