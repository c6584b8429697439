"""Admission control for caption generation.

Composes the rate limiter, the quota accountant and the circuit breaker into
the single decision made for each generation request:

    identity -> rate limit -> quota status -> tier gate -> consume quota
             -> circuit breaker -> upstream call

Every outcome is returned as one of the result types below rather than
raised, so routes only translate a decision into an HTTP response.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from captiongate.app.core.config import settings
from captiongate.app.core.logging import get_log_context, get_logger
from captiongate.app.core.utils import now_ms
from captiongate.app.exceptions import (
    CircuitOpenError,
    InvalidUpstreamResponseError,
)
from captiongate.app.providers.base import CaptionRequest
from captiongate.app.services.circuit_breaker import CircuitBreaker
from captiongate.app.services.identity import CallerIdentity, UnknownIdentity
from captiongate.app.services.quota import QuotaAccountant, QuotaStatus
from captiongate.app.services.rate_limiter import (
    RateLimiter,
    RateLimitResult,
    create_rate_limit_headers,
)

logger = get_logger(__name__)

GenerateFn = Callable[[CaptionRequest], Awaitable[Dict[str, Any]]]

_MESSAGES = {
    "identity": ("Unable to identify request.", "无法识别请求。"),
    "rate_limited": ("Too many requests. Please slow down.", "请求过于频繁，请稍后再试。"),
    "quota": ("Daily quota reached.", "今日配额已用完。"),
    "mode": ("This mode is available for Pro only.", "此模式仅对 Pro 开放。"),
    "image": ("Vision is available for Pro only.", "识图功能仅对 Pro 开放。"),
    "circuit_open": (
        "Service temporarily unavailable. Please try again later.",
        "服务暂时不可用，请稍后再试。",
    ),
    "upstream": ("Service error. Please try again later.", "服务异常，请稍后再试。"),
    "invalid": (
        "Model returned invalid format. Please try again.",
        "模型返回格式异常，请重试。",
    ),
}


def message(name: str, lang: str = "en") -> str:
    en, zh = _MESSAGES[name]
    return zh if lang == "zh" else en


@dataclass(frozen=True)
class Generated:
    result: Dict[str, Any]
    quota: QuotaStatus
    headers: Dict[str, str] = field(default_factory=dict)
    status_code: int = 200

    def to_response(self) -> dict:
        return {**self.result, "quota": self.quota.to_dict()}


@dataclass(frozen=True)
class QuotaReport:
    """Read-only quota answer for the quota endpoint."""
    quota: QuotaStatus
    headers: Dict[str, str] = field(default_factory=dict)
    status_code: int = 200

    def to_response(self) -> dict:
        return {"quota": self.quota.to_dict()}


@dataclass(frozen=True)
class RateLimited:
    rate: RateLimitResult
    message: str
    headers: Dict[str, str] = field(default_factory=dict)
    status_code: int = 429

    def to_response(self) -> dict:
        return {
            "error": "rate_limited",
            "message": self.message,
            "limit": self.rate.limit,
            "reset_at": self.rate.reset_at,
        }


@dataclass(frozen=True)
class QuotaExceeded:
    quota: QuotaStatus
    message: str
    headers: Dict[str, str] = field(default_factory=dict)
    status_code: int = 429

    def to_response(self) -> dict:
        return {"error": "quota_exceeded", "message": self.message, "quota": self.quota.to_dict()}


@dataclass(frozen=True)
class PermissionDenied:
    """A non-pro caller asked for a pro-only feature (``mode`` or ``image``)."""
    feature: str
    message: str
    headers: Dict[str, str] = field(default_factory=dict)
    status_code: int = 403

    def to_response(self) -> dict:
        return {"error": "permission_denied", "message": self.message, "feature": self.feature}


@dataclass(frozen=True)
class IdentityUnresolvable:
    message: str
    headers: Dict[str, str] = field(default_factory=dict)
    status_code: int = 400

    def to_response(self) -> dict:
        return {"error": "identity_unresolvable", "message": self.message}


@dataclass(frozen=True)
class ServiceFailure:
    """The upstream call did not produce a caption.

    503 when the circuit is open, 500 for an unusable upstream answer and
    502 for every other upstream failure.
    """
    status_code: int
    error_code: str
    message: str
    headers: Dict[str, str] = field(default_factory=dict)
    retry_after_ms: Optional[int] = None

    def to_response(self) -> dict:
        data = {"error": self.error_code, "message": self.message}
        if self.retry_after_ms is not None:
            data["retry_after_ms"] = self.retry_after_ms
        return data


AdmissionDecision = Union[
    Generated,
    RateLimited,
    QuotaExceeded,
    PermissionDenied,
    IdentityUnresolvable,
    ServiceFailure,
]


class AdmissionOrchestrator:
    """Makes the admission decision for generation and quota requests.

    Example:
        orchestrator = AdmissionOrchestrator(limiter, quota, breaker)
        decision = await orchestrator.generate(identity, request, provider.generate)
        return JSONResponse(decision.to_response(), decision.status_code, decision.headers)
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        quota: QuotaAccountant,
        breaker: CircuitBreaker,
        operation_name: Optional[str] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.quota = quota
        self.breaker = breaker
        self.operation_name = operation_name or settings.upstream_operation_name
        self._clock = clock

    def _rate_limited(self, rate: RateLimitResult, headers: Dict[str, str], lang: str) -> RateLimited:
        headers = {**headers, "Retry-After": str(rate.retry_after_seconds(self._clock()))}
        return RateLimited(rate=rate, message=message("rate_limited", lang), headers=headers)

    async def generate(
        self,
        identity: CallerIdentity,
        request: CaptionRequest,
        generate_fn: GenerateFn,
    ) -> AdmissionDecision:
        """Decide on one generation request and run it when admitted."""
        lang = request.lang
        if isinstance(identity, UnknownIdentity):
            return IdentityUnresolvable(message=message("identity", lang))

        context = get_log_context(identity=identity.key, route="generate")

        rate = await self.rate_limiter.check_route("generate", identity.key)
        headers = create_rate_limit_headers(rate)
        if not rate.allowed:
            return self._rate_limited(rate, headers, lang)

        status = await self.quota.get_quota_status(identity)
        if status.exhausted:
            return QuotaExceeded(quota=status, message=message("quota", lang), headers=headers)

        if not status.is_pro:
            if request.mode != "standard":
                logger.info(f"Rejected pro-only mode '{request.mode}'", extra=context)
                return PermissionDenied(feature="mode", message=message("mode", lang), headers=headers)
            if request.image:
                logger.info("Rejected pro-only image input", extra=context)
                return PermissionDenied(feature="image", message=message("image", lang), headers=headers)

        decision = await self.quota.consume_quota(identity)
        if not decision.allowed:
            return QuotaExceeded(quota=decision.status, message=message("quota", lang), headers=headers)

        try:
            result = await self.breaker.with_circuit_breaker(
                self.operation_name, lambda: generate_fn(request)
            )
        except CircuitOpenError as e:
            return ServiceFailure(
                status_code=503,
                error_code=e.error_code,
                message=message("circuit_open", lang),
                headers=headers,
                retry_after_ms=e.retry_after_ms,
            )
        except InvalidUpstreamResponseError as e:
            return ServiceFailure(
                status_code=500,
                error_code=e.error_code,
                message=message("invalid", lang),
                headers=headers,
            )
        except Exception as e:
            logger.error(
                f"Upstream generation failed: {type(e).__name__}: {e}",
                extra={**context, "operation": self.operation_name},
            )
            return ServiceFailure(
                status_code=502,
                error_code="upstream_error",
                message=message("upstream", lang),
                headers=headers,
            )

        return Generated(result=result, quota=decision.status, headers=headers)

    async def check_quota(
        self, identity: CallerIdentity, lang: str = "en"
    ) -> Union[QuotaReport, RateLimited]:
        """Rate limit the quota endpoint, then read the status without consuming.

        ``lang`` selects the language of the rate-limited message.
        """
        rate = await self.rate_limiter.check_route("quota", identity.key)
        headers = create_rate_limit_headers(rate)
        if not rate.allowed:
            return self._rate_limited(rate, headers, lang)
        status = await self.quota.get_quota_status(identity)
        return QuotaReport(quota=status, headers=headers)
