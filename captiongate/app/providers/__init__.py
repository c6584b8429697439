"""Caption providers package.

This package provides:
- Base provider interface (CaptionProvider) and request model
- OpenAI-compatible provider (OpenAIProvider)
- Local mock provider (MockCaptionProvider)
- Provider construction from settings (create_provider)
"""

from typing import Optional

import httpx

from captiongate.app.core.config import settings
from captiongate.app.providers.base import (
    MODES,
    CaptionProvider,
    CaptionRequest,
    validate_caption_payload,
)
from captiongate.app.providers.mock import MockCaptionProvider, SimulatedUpstreamError
from captiongate.app.providers.openai import OpenAIProvider


def create_provider(http_client: Optional[httpx.AsyncClient] = None) -> CaptionProvider:
    """Build the provider selected by ``settings.upstream_provider``."""
    if settings.upstream_provider == "mock":
        return MockCaptionProvider()
    return OpenAIProvider(
        base_url=settings.openai_base_url,
        api_key=settings.openai_api_key,
        text_model=settings.openai_text_model,
        vision_model=settings.openai_vision_model,
        temperature=settings.openai_temperature,
        http_client=http_client,
        timeout=settings.httpx_read_timeout,
    )


__all__ = [
    "MODES",
    "CaptionProvider",
    "CaptionRequest",
    "MockCaptionProvider",
    "OpenAIProvider",
    "SimulatedUpstreamError",
    "create_provider",
    "validate_caption_payload",
]
