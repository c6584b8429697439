"""Shared objects and FastAPI dependencies for the API routes."""

import hmac
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Depends, Request

from captiongate.app.core.config import settings
from captiongate.app.core.counter_store import CounterStore, create_counter_store
from captiongate.app.core.redis import RedisConnection
from captiongate.app.exceptions import AdminAuthenticationError
from captiongate.app.providers import CaptionProvider, create_provider
from captiongate.app.services.admission import AdmissionOrchestrator
from captiongate.app.services.circuit_breaker import CircuitBreaker, create_circuit_backend
from captiongate.app.services.identity import (
    Authenticator,
    CallerIdentity,
    StaticTokenAuthenticator,
    get_client_ip,
    resolve_identity,
)
from captiongate.app.services.quota import ProfileDirectory, QuotaAccountant, StaticProfileDirectory
from captiongate.app.services.rate_limiter import RateLimiter


@dataclass
class AppServices:
    """Objects shared by all requests of one application instance."""
    redis: RedisConnection
    store: CounterStore
    rate_limiter: RateLimiter
    quota: QuotaAccountant
    breaker: CircuitBreaker
    orchestrator: AdmissionOrchestrator
    authenticator: Authenticator
    provider: CaptionProvider


def build_services(
    redis: Optional[RedisConnection] = None,
    provider: Optional[CaptionProvider] = None,
    authenticator: Optional[Authenticator] = None,
    profiles: Optional[ProfileDirectory] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> AppServices:
    """Wire the admission stack from settings.

    Any collaborator can be passed in to replace the configured default.
    """
    redis = redis or RedisConnection()
    store = create_counter_store(redis)
    rate_limiter = RateLimiter(store)
    quota = QuotaAccountant(store, profiles or StaticProfileDirectory())
    breaker = CircuitBreaker(create_circuit_backend(redis))
    return AppServices(
        redis=redis,
        store=store,
        rate_limiter=rate_limiter,
        quota=quota,
        breaker=breaker,
        orchestrator=AdmissionOrchestrator(rate_limiter, quota, breaker),
        authenticator=authenticator or StaticTokenAuthenticator(),
        provider=provider or create_provider(http_client),
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services


async def get_identity(
    request: Request, services: AppServices = Depends(get_services)
) -> CallerIdentity:
    """Resolve the caller from the bearer token, then the client address."""
    user_id = await services.authenticator.authenticate(request.headers.get("Authorization"))
    peer = request.client.host if request.client else None
    return resolve_identity(user_id, get_client_ip(request.headers, peer))


def require_admin(request: Request) -> str:
    """Validate the operator token sent in ``X-Admin-Token``.

    Raises:
        AdminAuthenticationError: If no admin token is configured or the
            header does not match it
    """
    token = request.headers.get("X-Admin-Token", "")
    expected = settings.admin_token
    # An unset admin token disables the operator endpoints.
    matches = hmac.compare_digest(token.encode(), expected.encode())
    if not expected or not matches:
        raise AdminAuthenticationError()
    return "admin"
