"""Caption feedback endpoint."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator

from captiongate.app.core.logging import get_log_context, get_logger
from captiongate.app.core.utils import clean_text, now_ms
from captiongate.app.services.admission import message
from captiongate.app.services.identity import CallerIdentity
from captiongate.app.services.rate_limiter import create_rate_limit_headers

from .deps import AppServices, get_identity, get_services

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["feedback"])

MAX_CAPTION_LENGTH = 1000
MAX_HASHTAGS_LENGTH = 500
MAX_VARIANT_LENGTH = 50
MAX_FIELD_LENGTH = 120


class FeedbackBody(BaseModel):
    """A thumbs up (``1``) or down (``-1``) on a generated caption."""
    rating: Literal[1, -1]
    lang: str = "en"
    mode: Optional[str] = None
    caption: Optional[str] = None
    hashtags: Optional[str] = None
    detected_object: Optional[str] = None
    variant: Optional[str] = None

    @field_validator("lang", mode="before")
    @classmethod
    def normalize_lang(cls, v):
        return "zh" if v == "zh" else "en"

    @field_validator("mode", "detected_object", mode="before")
    @classmethod
    def clean_short(cls, v):
        return clean_text(v, MAX_FIELD_LENGTH) if isinstance(v, str) else None

    @field_validator("caption", mode="before")
    @classmethod
    def clean_caption(cls, v):
        return clean_text(v, MAX_CAPTION_LENGTH) if isinstance(v, str) else None

    @field_validator("hashtags", mode="before")
    @classmethod
    def clean_hashtags(cls, v):
        return clean_text(v, MAX_HASHTAGS_LENGTH) if isinstance(v, str) else None

    @field_validator("variant", mode="before")
    @classmethod
    def clean_variant(cls, v):
        return clean_text(v, MAX_VARIANT_LENGTH) if isinstance(v, str) else None


@router.post("/feedback")
async def submit_feedback(
    body: FeedbackBody,
    identity: CallerIdentity = Depends(get_identity),
    services: AppServices = Depends(get_services),
) -> JSONResponse:
    """Record a rating for a caption, rate limited per caller."""
    rate = await services.rate_limiter.check_route("feedback", identity.key)
    headers = create_rate_limit_headers(rate)
    if not rate.allowed:
        return JSONResponse(
            status_code=429,
            content={"error": "rate_limited", "message": message("rate_limited", body.lang)},
            headers={**headers, "Retry-After": str(rate.retry_after_seconds(now_ms()))},
        )

    logger.info(
        f"Feedback {body.rating:+d} from {identity.key}",
        extra=get_log_context(
            identity=identity.key,
            route="feedback",
            rating=body.rating,
            mode=body.mode,
            variant=body.variant,
            lang=body.lang,
            detected_object=body.detected_object,
        ),
    )
    return JSONResponse(content={"ok": True}, headers=headers)
