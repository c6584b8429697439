"""Mock provider for local development and tests.

Returns canned captions without any network call. Enable with:
    UPSTREAM_PROVIDER=mock
"""

import asyncio
import random
from typing import Any, Dict, Optional

from captiongate.app.providers.base import CaptionProvider, CaptionRequest


class SimulatedUpstreamError(Exception):
    """Failure raised by the mock provider, carrying an HTTP status."""

    def __init__(self, status_code: int = 503):
        self.status_code = status_code
        super().__init__(f"Simulated upstream failure ({status_code})")


class MockCaptionProvider(CaptionProvider):
    """Caption provider that answers locally.

    Features:
    - Configurable response delay
    - Configurable failure rate and failure status for exercising the
      circuit breaker
    """

    _CAPTIONS = {
        "standard": "Simple moments, clean frames. ✨",
        "savage": "Built different. No days off. 🔥",
        "rizz": "Main character energy, softly delivered. 😉",
    }

    def __init__(
        self,
        min_delay: float = 0.0,
        max_delay: float = 0.0,
        failure_rate: float = 0.0,
        failure_status: int = 503,
        seed: Optional[int] = None,
    ):
        super().__init__("http://mock.provider", "mock-key")
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.failure_rate = failure_rate
        self.failure_status = failure_status
        self._random = random.Random(seed)
        self.calls = 0

    async def generate(self, request: CaptionRequest) -> Dict[str, Any]:
        self.calls += 1
        if self.max_delay > 0:
            await asyncio.sleep(self._random.uniform(self.min_delay, self.max_delay))

        if self.failure_rate and self._random.random() < self.failure_rate:
            raise SimulatedUpstreamError(self.failure_status)

        words = [w.strip("#.,!?").lower() for w in request.text.split() if len(w) > 3]
        tags = " ".join(f"#{w}" for w in words[:3]) or "#mood #daily #vibes"
        return {
            "caption": self._CAPTIONS.get(request.mode, self._CAPTIONS["standard"]),
            "hashtags": tags,
            "detected_object": "Photo subject" if request.image else None,
            "affiliate_category": None,
        }
