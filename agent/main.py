"""Athlete governance agent HTTP host.

Thin FastAPI application exposing the orchestrator's blocking and streaming
entry points plus liveness and readiness probes.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse

from agent.models import HealthResponse
from agent.orchestrators.query_orchestrator import QueryOrchestrator, create_orchestrator
from agent.routers import chat as chat_router
from agent.tools.vector_store import create_vector_store
from libs.caching.redis_client import close_redis_client
from libs.common.log_config import configure_logging
from libs.common.settings import Settings, get_settings, validate_runtime_settings
from libs.memory.summary_store import create_summary_store
from libs.resilience.circuit_breaker import CircuitBreakerRegistry

logger = structlog.get_logger(__name__)

SERVICE_NAME = "athlete-agent"
SERVICE_VERSION = "0.1.0"


async def build_orchestrator(settings: Settings) -> QueryOrchestrator:
    """Production wiring: pgvector store, Redis summary store, Tavily search."""
    validate_runtime_settings(settings)
    breakers = CircuitBreakerRegistry.from_settings(settings)
    summary_store = await create_summary_store(settings) if settings.feature_conversation_memory else None
    return create_orchestrator(
        settings,
        vector_store=create_vector_store(settings, breakers),
        breakers=breakers,
        summary_store=summary_store,
    )


def create_app(orchestrator: Optional[QueryOrchestrator] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        orchestrator: Pre-built orchestrator; built from settings at start-up when omitted
        settings: Settings override, mainly for tests
    """
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "orchestrator", None) is None:
            # Configuration errors are fatal here, never per request
            app.state.orchestrator = await build_orchestrator(settings)
        logger.info("Agent host started", env=settings.app_env)
        yield
        await app.state.orchestrator.drain()
        await close_redis_client()
        logger.info("Agent host stopped")

    app = FastAPI(
        title="Athlete Governance Agent API",
        description="Question answering over U.S. Olympic and Paralympic governance documents",
        version=SERVICE_VERSION,
        default_response_class=ORJSONResponse,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.state.settings = settings

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing and structured data."""
        start_time = time.time()
        request_id = f"req_{int(start_time * 1000000)}"
        request.state.request_id = request_id

        logger.info("Request started", request_id=request_id, method=request.method, path=request.url.path)
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                request_id=request_id,
                error=str(e),
                process_time_ms=round((time.time() - start_time) * 1000, 2),
                exc_info=True,
            )
            raise

        logger.info(
            "Request completed",
            request_id=request_id,
            status_code=response.status_code,
            process_time_ms=round((time.time() - start_time) * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(chat_router.router, prefix="/api", tags=["Chat"])

    @app.get("/healthz", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Liveness probe."""
        return HealthResponse(status="healthy", service=SERVICE_NAME, version=SERVICE_VERSION, timestamp=time.time())

    @app.get("/readyz", response_model=HealthResponse, tags=["Health"])
    async def readiness_check() -> ORJSONResponse:
        """Readiness probe with per-dependency circuit breaker metrics."""
        current = app.state.orchestrator
        if current is None:
            body = HealthResponse(
                status="not_ready", service=SERVICE_NAME, version=SERVICE_VERSION, timestamp=time.time()
            )
            return ORJSONResponse(status_code=503, content=body.model_dump(mode="json"))

        body = HealthResponse(
            status="ready",
            service=SERVICE_NAME,
            version=SERVICE_VERSION,
            timestamp=time.time(),
            circuit_breakers=current.gateway.breakers.all_metrics(),
        )
        return ORJSONResponse(content=body.model_dump(mode="json"))

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000, log_level="info")
