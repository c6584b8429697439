"""Pooled HTTP client for the upstream caption API.

One client is opened for the application lifetime and handed to the caption
provider, so connections to the upstream API are reused across requests.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from captiongate.app.core.config import settings


def create_http_client() -> httpx.AsyncClient:
    """Create a client with the configured pool limits and timeouts.

    The read timeout bounds a single upstream response; the circuit breaker
    applies its own overall budget on top of it.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=settings.httpx_connect_timeout,
            read=settings.httpx_read_timeout,
            write=settings.httpx_write_timeout,
            pool=settings.httpx_pool_timeout,
        ),
        limits=httpx.Limits(
            max_connections=settings.httpx_max_connections,
            max_keepalive_connections=settings.httpx_max_keepalive_connections,
            keepalive_expiry=settings.httpx_keepalive_expiry,
        ),
    )


@asynccontextmanager
async def init_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """Open the shared client for the duration of the application lifespan."""
    async with create_http_client() as client:
        yield client
