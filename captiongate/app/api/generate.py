"""Caption generation endpoint."""

import base64
import binascii
import re
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator

from captiongate.app.core.config import settings
from captiongate.app.core.logging import get_logger
from captiongate.app.providers import MODES, CaptionRequest
from captiongate.app.services.identity import CallerIdentity

from .deps import AppServices, get_identity, get_services

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["generate"])

_DATA_URL = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+);base64,(.+)$", re.DOTALL)


class GenerateBody(BaseModel):
    """Request body of ``POST /api/generate``.

    Unknown modes fall back to ``standard`` and unknown languages to ``en``.
    """
    text: str = ""
    mode: str = "standard"
    image: Optional[str] = None
    lang: str = "en"

    @field_validator("text", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v):
        candidate = v.strip().lower() if isinstance(v, str) else ""
        return candidate if candidate in MODES else "standard"

    @field_validator("lang", mode="before")
    @classmethod
    def normalize_lang(cls, v):
        return "zh" if v == "zh" else "en"

    @field_validator("image", mode="before")
    @classmethod
    def empty_image_is_none(cls, v):
        return v or None


def _invalid(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "invalid_input", "message": message})


def image_size(data_url: str) -> Optional[int]:
    """Decoded size of a base64 image data URL, or None if malformed."""
    match = _DATA_URL.match(data_url)
    if match is None:
        return None
    try:
        return len(base64.b64decode(match.group(2), validate=True))
    except (binascii.Error, ValueError):
        return None


@router.post("/generate")
async def generate(
    body: GenerateBody,
    identity: CallerIdentity = Depends(get_identity),
    services: AppServices = Depends(get_services),
) -> JSONResponse:
    """Generate a caption for text and, for pro callers, an image."""
    zh = body.lang == "zh"
    if not body.text and not body.image:
        return _invalid("请输入文本或上传图片。" if zh else "Please enter text or upload an image.")
    if len(body.text) > settings.max_text_length:
        return _invalid("文本过长。" if zh else "Text too long.")
    if body.image is not None:
        size = image_size(body.image)
        if size is None:
            return _invalid("图片格式无效。" if zh else "Invalid image.")
        if size > settings.max_image_bytes:
            return _invalid("图片过大。" if zh else "Image too large.")

    request = CaptionRequest(text=body.text, mode=body.mode, lang=body.lang, image=body.image)
    decision = await services.orchestrator.generate(identity, request, services.provider.generate)
    return JSONResponse(
        status_code=decision.status_code,
        content=decision.to_response(),
        headers=decision.headers,
    )
