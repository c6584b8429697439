from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from captiongate.app.api import (
    admin_router,
    events_router,
    feedback_router,
    generate_router,
    health_router,
    quota_router,
)
from captiongate.app.api.deps import AppServices, build_services
from captiongate.app.core.config import settings
from captiongate.app.core.http_client import init_http_client
from captiongate.app.core.logging import get_logger, setup_logging
from captiongate.app.exceptions import CircuitOpenError, GatewayException
from captiongate.app.middleware.request_id import RequestIdMiddleware, get_request_id


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Pre-built admission stack. When omitted, the stack is built
            from settings during startup.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Build the shared admission stack on startup, close Redis on shutdown."""
        if services is not None:
            yield
            return

        async with init_http_client() as http_client:
            app.state.services = build_services(http_client=http_client)
            logger.info(
                "Application startup complete",
                extra={
                    "counter_store": app.state.services.store.backend_name,
                    "provider": app.state.services.provider.name,
                    "debug_mode": settings.debug,
                },
            )
            try:
                yield
            finally:
                await app.state.services.redis.close()
                logger.info("Application shutdown complete")

    app = FastAPI(
        title="captiongate",
        description="Caption generation with rate limiting, daily quotas and an upstream circuit breaker",
        version="1.0.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(RequestIdMiddleware)

    app.include_router(generate_router)
    app.include_router(quota_router)
    app.include_router(feedback_router)
    app.include_router(events_router)
    app.include_router(health_router)
    app.include_router(admin_router)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Report malformed request bodies as 400."""
        errors = [
            {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_input", "message": "Invalid request body", "details": errors},
        )

    @app.exception_handler(GatewayException)
    async def gateway_exception_handler(request: Request, exc: GatewayException) -> JSONResponse:
        """Map GatewayException subclasses to their HTTP status."""
        headers = {}
        if isinstance(exc, CircuitOpenError) and exc.retry_after_ms is not None:
            headers["Retry-After"] = str(max(1, -(-exc.retry_after_ms // 1000)))
        return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global handler for unhandled exceptions.

        The traceback is logged server-side only; debug mode adds the
        exception message to the response.
        """
        request_id = get_request_id(request)
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={"request_id": request_id, "exception_type": type(exc).__name__},
        )

        content = {
            "error": "internal_error",
            "message": str(exc) if settings.debug else "Internal server error",
            "request_id": request_id,
        }
        if settings.debug:
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
