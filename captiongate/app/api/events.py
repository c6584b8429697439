"""Funnel event endpoint."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from captiongate.app.core.logging import get_log_context, get_logger
from captiongate.app.core.utils import clean_text, now_ms
from captiongate.app.services.identity import CallerIdentity
from captiongate.app.services.rate_limiter import create_rate_limit_headers

from .deps import AppServices, get_identity, get_services

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["events"])

EventName = Literal[
    "generate_success",
    "copy_caption",
    "copy_all",
    "feedback_up",
    "feedback_down",
    "wish_submit",
]


class EventProps(BaseModel):
    session_id: Optional[str] = Field(default=None, max_length=120)
    source: Optional[str] = Field(default=None, max_length=120)
    medium: Optional[str] = Field(default=None, max_length=120)
    campaign: Optional[str] = Field(default=None, max_length=120)
    content: Optional[str] = Field(default=None, max_length=120)
    term: Optional[str] = Field(default=None, max_length=120)
    referrer: Optional[str] = Field(default=None, max_length=200)
    current_path: Optional[str] = Field(default=None, max_length=200)
    landing_path: Optional[str] = Field(default=None, max_length=200)
    lang: Optional[str] = Field(default=None, max_length=10)
    variant: Optional[str] = Field(default=None, max_length=80)
    mode: Optional[str] = Field(default=None, max_length=20)
    has_image: bool = False

    def attribution(self) -> dict:
        """Cleaned props with the defaults used for reporting."""
        return {
            "session_id": clean_text(self.session_id, 120),
            "source": clean_text(self.source, 120) or "direct",
            "medium": clean_text(self.medium, 120) or "direct",
            "campaign": clean_text(self.campaign, 120),
            "content": clean_text(self.content, 120),
            "term": clean_text(self.term, 120),
            "referrer": clean_text(self.referrer, 200),
            "path": clean_text(self.current_path, 200) or "/",
            "landing_path": clean_text(self.landing_path, 200) or "/",
            "lang": clean_text(self.lang, 10) or "en",
            "variant": clean_text(self.variant, 80),
            "mode": clean_text(self.mode, 20),
            "has_image": self.has_image,
        }


class EventBody(BaseModel):
    event: EventName
    props: EventProps = Field(default_factory=EventProps)


@router.post("/events")
async def record_event(
    body: EventBody,
    identity: CallerIdentity = Depends(get_identity),
    services: AppServices = Depends(get_services),
) -> JSONResponse:
    """Record a client-side funnel event, rate limited per caller."""
    rate = await services.rate_limiter.check_route("events", identity.key)
    headers = create_rate_limit_headers(rate)
    if not rate.allowed:
        logger.warning(
            f"Event rate limit hit for {identity.key}",
            extra=get_log_context(identity=identity.key, route="events"),
        )
        return JSONResponse(
            status_code=429,
            content={"error": "rate_limited", "message": "Rate limited"},
            headers={**headers, "Retry-After": str(rate.retry_after_seconds(now_ms()))},
        )

    logger.info(
        f"Event {body.event}",
        extra=get_log_context(identity=identity.key, route="events", event=body.event, **body.props.attribution()),
    )
    return JSONResponse(content={"ok": True}, headers=headers)
