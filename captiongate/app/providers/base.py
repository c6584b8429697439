from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from captiongate.app.exceptions import InvalidUpstreamResponseError


MODES = ("standard", "savage", "rizz")


@dataclass(frozen=True)
class CaptionRequest:
    """Normalized input of one caption generation.

    Attributes:
        text: Trimmed user text, possibly empty when an image is sent
        mode: One of ``MODES``
        lang: ``en`` or ``zh``
        image: Optional image as a ``data:<mime>;base64,...`` URL
    """
    text: str
    mode: str = "standard"
    lang: str = "en"
    image: Optional[str] = None


def validate_caption_payload(data: Any) -> Dict[str, Any]:
    """Check the shape of a generated caption payload.

    Returns:
        Dict with caption, hashtags, detected_object and affiliate_category

    Raises:
        InvalidUpstreamResponseError: If a field is missing or mistyped
    """
    if not isinstance(data, dict):
        raise InvalidUpstreamResponseError()
    if not isinstance(data.get("caption"), str) or not isinstance(data.get("hashtags"), str):
        raise InvalidUpstreamResponseError()
    for field in ("detected_object", "affiliate_category"):
        value = data.get(field)
        if value is not None and not isinstance(value, str):
            raise InvalidUpstreamResponseError()
    return {
        "caption": data["caption"],
        "hashtags": data["hashtags"],
        "detected_object": data.get("detected_object"),
        "affiliate_category": data.get("affiliate_category"),
    }


class CaptionProvider(ABC):
    """Base class for caption generation providers.

    Subclasses can accept an external httpx.AsyncClient for connection
    pooling, or create one per request if not provided.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self._http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def generate(self, request: CaptionRequest) -> Dict[str, Any]:
        """Generate a caption for the request.

        Returns:
            Validated payload, see ``validate_caption_payload``

        Raises:
            httpx.HTTPStatusError: If the upstream API returns an error status
            InvalidUpstreamResponseError: If the answer has the wrong shape
        """
        pass
