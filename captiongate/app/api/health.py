"""Health check endpoint."""

from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from captiongate.app.core.config import settings
from captiongate.app.services.identity import CallerIdentity
from captiongate.app.services.rate_limiter import create_rate_limit_headers

from .deps import AppServices, get_identity, get_services

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(
    identity: CallerIdentity = Depends(get_identity),
    services: AppServices = Depends(get_services),
) -> JSONResponse:
    """Report Redis, counter store and upstream circuit status.

    Status is ``degraded`` when Redis is enabled but unreachable, or when the
    upstream circuit is not closed.
    """
    rate = await services.rate_limiter.check_route("health", identity.key)
    headers = create_rate_limit_headers(rate)
    if not rate.allowed:
        return JSONResponse(
            status_code=429,
            content={"error": "rate_limited", "message": "Too many requests"},
            headers=headers,
        )

    status = "ok"
    components: Dict[str, Any] = {}

    redis_stats = services.redis.stats()
    if redis_stats["enabled"]:
        reachable = await services.redis.ping()
        redis_stats["status"] = "ok" if reachable else "error"
        if not reachable:
            status = "degraded"
    else:
        redis_stats["status"] = "disabled"
    components["redis"] = redis_stats
    components["counter_store"] = {"backend": services.store.backend_name}

    operation = settings.upstream_operation_name
    breaker = await services.breaker.get_stats(operation)
    if breaker.state.value != "CLOSED":
        status = "degraded"
    components["upstream"] = {
        "provider": services.provider.name,
        "operation": operation,
        "circuitBreaker": breaker.to_dict(),
    }

    return JSONResponse(content={"status": status, "components": components}, headers=headers)
