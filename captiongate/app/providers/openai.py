"""OpenAI caption provider.

Works with the OpenAI API and other OpenAI-compatible chat completion
endpoints. The model is asked for a strict JSON object which is parsed and
shape-checked before it is returned.
"""

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from captiongate.app.core.logging import get_logger
from captiongate.app.exceptions import InvalidUpstreamResponseError
from captiongate.app.providers.base import CaptionProvider, CaptionRequest, validate_caption_payload

logger = get_logger(__name__)


SYSTEM_PROMPT = """You are a social media caption writer.
Write one short caption (1-3 sentences, 1-3 emojis) and 3-5 hashtags for the
user's input, in the requested language and mode:
- standard: clean and polished
- savage: bold, punchy, high energy
- rizz: charming and playful
Name a specific object you recognize (or null) and a related product
category (or null).
Return ONLY a JSON object:
{"caption": "...", "hashtags": "#a #b #c", "detected_object": null, "affiliate_category": null}"""

_LANGUAGES = {"en": "English", "zh": "Chinese"}


class OpenAIProvider(CaptionProvider):
    """Chat-completions caption provider.

    If http_client is provided it is used for all requests (connection
    reuse); otherwise a client is created per request.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        text_model: str = "gpt-4o-mini",
        vision_model: str = "gpt-4o-mini",
        temperature: float = 0.9,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        super().__init__(base_url, api_key, http_client, timeout)
        self.text_model = text_model
        self.vision_model = vision_model
        self.temperature = temperature
        self.headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @asynccontextmanager
    async def _client_context(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        client = httpx.AsyncClient(timeout=self.timeout)
        try:
            yield client
        finally:
            await client.aclose()

    def build_messages(self, request: CaptionRequest) -> List[Dict[str, Any]]:
        language = _LANGUAGES.get(request.lang, "English")
        mode = request.mode.capitalize()
        if request.image:
            prompt = (
                f"Language: {language}. Mode: {mode}. "
                f"User text: {request.text or 'N/A'}. Analyze the image and respond."
            )
            user_message = {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": request.image}},
                ],
            }
        else:
            user_message = {
                "role": "user",
                "content": f"Language: {language}. Mode: {mode}. User text: {request.text}",
            }
        return [{"role": "system", "content": SYSTEM_PROMPT}, user_message]

    def build_payload(self, request: CaptionRequest) -> Dict[str, Any]:
        return {
            "model": self.vision_model if request.image else self.text_model,
            "messages": self.build_messages(request),
            "response_format": {"type": "json_object"},
            "temperature": self.temperature,
        }

    async def generate(self, request: CaptionRequest) -> Dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        async with self._client_context() as client:
            resp = await client.post(url, headers=self.headers, json=self.build_payload(request))
            resp.raise_for_status()
            body = resp.json()

        try:
            raw = (body["choices"][0]["message"]["content"] or "").strip()
        except (KeyError, IndexError, TypeError):
            logger.warning("Upstream response has no message content")
            raise InvalidUpstreamResponseError()

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Upstream message content is not valid JSON")
            raise InvalidUpstreamResponseError()

        return validate_caption_payload(parsed)
