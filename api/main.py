"""Converso API Service.

FastAPI application receiving Twilio WhatsApp webhooks and answering them
through the retrieval-augmented message pipeline.
"""

from __future__ import annotations

import logging
import sys
import time
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from api.dependencies import get_task_runner
from api.models import HealthResponse
from api.routers import whatsapp as whatsapp_router
from libs.caching.redis_client import close_redis_client, health_check as redis_health_check
from libs.common.settings import get_settings

VERSION = "0.1.0"


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog on top of the standard library logger."""
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level))
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


configure_logging(get_settings().log_level)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Converso API starting", version=VERSION, app_env=get_settings().app_env)
    yield
    # Let deferred answers finish before the process exits
    await get_task_runner().drain(timeout=get_settings().shutdown_drain_timeout_seconds)
    await close_redis_client()
    logger.info("Converso API stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Converso WhatsApp Assistant API",
        description="Retrieval-augmented assistant answering WhatsApp messages via Twilio",
        version=VERSION,
        debug=settings.debug,
        lifespan=lifespan,
    )

    # Add request size limiter middleware
    @app.middleware("http")
    async def limit_request_size(request: Request, call_next):
        """Limit request body size to prevent abuse."""
        max_size = 1024 * 1024  # 1MB

        if request.method in ["POST", "PUT", "PATCH"]:
            content_length = request.headers.get("content-length")
            if content_length and int(content_length) > max_size:
                return JSONResponse(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    content={
                        "error_code": "REQUEST_TOO_LARGE",
                        "message": f"Request body too large. Maximum size: {max_size} bytes"
                    }
                )

        return await call_next(request)

    # Add request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing and structured data."""
        start_time = time.time()
        request_id = f"req_{int(start_time * 1000000)}"

        request.state.request_id = request_id

        logger.info(
            "Request started",
            request_id=request_id,
            method=request.method,
            url=str(request.url),
            user_agent=request.headers.get("user-agent"),
        )

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

    app.include_router(whatsapp_router.router, tags=["WhatsApp"])

    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint to confirm the API is running."""
        return {"message": "Converso API is running."}

    @app.get("/healthz", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        """Health check endpoint for liveness probes.

        Example:
            ```bash
            curl http://localhost:8000/healthz
            ```
        """
        redis_ok = await redis_health_check()
        return HealthResponse(
            status="healthy" if redis_ok else "unhealthy",
            service="converso",
            version=VERSION,
            timestamp=time.time(),
            details={
                "redis": redis_ok,
                "reprocessing_in_flight": get_task_runner().in_flight_count,
            },
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # For local development only
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
