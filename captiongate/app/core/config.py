import json
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class RatePolicy(BaseModel):
    """Fixed-window limit for one route purpose."""

    limit: int = Field(ge=1)
    window_ms: int = Field(ge=1)


def _parse_id_set(raw: Any) -> set[str]:
    if raw is None:
        return set()
    if isinstance(raw, (list, tuple, set)):
        return {str(v).strip() for v in raw if str(v).strip()}

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return set()
    # Accept a JSON list as well as a comma separated string.
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return {str(v).strip() for v in parsed if str(v).strip()}
    return {part.strip() for part in raw.split(",") if part.strip()}


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Redis settings (optional)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    redis_max_errors: int = 10  # errors before Redis is skipped
    redis_error_reset_seconds: int = 60

    # In-process fallback store
    counter_store_max_entries: int = 10000

    # Daily quota policy (pro is unlimited)
    quota_guest_daily_limit: int = 3
    quota_user_daily_limit: int = 20
    profile_cache_ttl_seconds: int = 60

    # Identity collaborators
    pro_user_ids: Annotated[set[str], NoDecode] = set()
    auth_tokens: dict[str, str] = {}  # bearer token -> user id
    admin_token: str = ""

    # Rate limit windows per route purpose
    rate_limit_generate: RatePolicy = RatePolicy(limit=10, window_ms=60_000)
    rate_limit_quota: RatePolicy = RatePolicy(limit=60, window_ms=60_000)
    rate_limit_feedback: RatePolicy = RatePolicy(limit=10, window_ms=60_000)
    rate_limit_events: RatePolicy = RatePolicy(limit=120, window_ms=60_000)
    rate_limit_health: RatePolicy = RatePolicy(limit=30, window_ms=60_000)

    # Circuit breaker policy
    circuit_failure_threshold: int = 5
    circuit_reset_timeout_ms: int = 60_000
    circuit_half_open_attempts: int = 3
    circuit_retryable_status_codes: frozenset[int] = frozenset({429, 500, 502, 503, 504})
    circuit_state_ttl_seconds: int = 3600

    # Upstream generation call
    upstream_provider: str = "openai"  # openai | mock
    upstream_operation_name: str = "openai.generate"
    upstream_timeout_seconds: float = 28.0
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_text_model: str = "gpt-4o-mini"
    openai_vision_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.9

    # HTTP Client connection pool settings
    httpx_connect_timeout: float = 10.0
    httpx_read_timeout: float = 30.0
    httpx_write_timeout: float = 10.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Input validation
    max_text_length: int = 2000
    max_image_bytes: int = 10 * 1024 * 1024

    @field_validator("pro_user_ids", mode="before")
    @classmethod
    def decode_pro_user_ids(cls, v: Any) -> set[str]:
        return _parse_id_set(v)

    @field_validator(
        "quota_guest_daily_limit",
        "quota_user_daily_limit",
        "circuit_failure_threshold",
        "circuit_reset_timeout_ms",
        "circuit_half_open_attempts",
        "redis_max_errors",
        "counter_store_max_entries",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate policy values are positive."""
        if v < 1:
            raise ValueError("Policy values must be at least 1")
        return v

    @field_validator("upstream_timeout_seconds", "httpx_connect_timeout", "httpx_read_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("circuit_retryable_status_codes")
    @classmethod
    def validate_status_codes(cls, v: frozenset[int]) -> frozenset[int]:
        for code in v:
            if code < 100 or code > 599:
                raise ValueError(f"Invalid HTTP status code: {code}")
        return v

    @field_validator("upstream_provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("openai", "mock"):
            raise ValueError("upstream_provider must be 'openai' or 'mock'")
        return v

    def rate_policy(self, purpose: str) -> RatePolicy:
        """Return the rate policy configured for a route purpose."""
        policy = getattr(self, f"rate_limit_{purpose}", None)
        if not isinstance(policy, RatePolicy):
            raise KeyError(f"No rate policy configured for '{purpose}'")
        return policy

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
