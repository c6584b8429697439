"""Tests for settings loading and validation."""

import pytest
from pydantic import ValidationError

from captiongate.app.core.config import RatePolicy, Settings


class TestDefaults:
    def test_policy_defaults(self):
        s = Settings(_env_file=None)

        assert s.quota_guest_daily_limit == 3
        assert s.quota_user_daily_limit == 20
        assert s.circuit_failure_threshold == 5
        assert s.circuit_reset_timeout_ms == 60_000
        assert s.circuit_half_open_attempts == 3
        assert s.circuit_retryable_status_codes == frozenset({429, 500, 502, 503, 504})
        assert s.upstream_timeout_seconds == 28.0
        assert s.upstream_operation_name == "openai.generate"

    def test_rate_policies(self):
        s = Settings(_env_file=None)

        assert s.rate_policy("quota") == RatePolicy(limit=60, window_ms=60_000)
        assert s.rate_policy("events").limit == 120
        assert s.rate_policy("health").limit == 30
        with pytest.raises(KeyError):
            s.rate_policy("unknown")


class TestEnvironment:
    def test_pro_user_ids_from_comma_list(self, monkeypatch):
        monkeypatch.setenv("PRO_USER_IDS", "a, b,,c")
        assert Settings(_env_file=None).pro_user_ids == {"a", "b", "c"}

    def test_pro_user_ids_from_json_list(self, monkeypatch):
        monkeypatch.setenv("PRO_USER_IDS", '["a", "b"]')
        assert Settings(_env_file=None).pro_user_ids == {"a", "b"}

    def test_auth_tokens_from_json(self, monkeypatch):
        monkeypatch.setenv("AUTH_TOKENS", '{"tok": "u1"}')
        assert Settings(_env_file=None).auth_tokens == {"tok": "u1"}

    def test_rate_policy_from_json(self, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_GENERATE", '{"limit": 5, "window_ms": 1000}')
        assert Settings(_env_file=None).rate_limit_generate == RatePolicy(limit=5, window_ms=1000)

    def test_provider_is_normalized(self, monkeypatch):
        monkeypatch.setenv("UPSTREAM_PROVIDER", " MOCK ")
        assert Settings(_env_file=None).upstream_provider == "mock"


class TestValidation:
    @pytest.mark.parametrize(
        "field", ["quota_guest_daily_limit", "circuit_failure_threshold", "circuit_half_open_attempts"]
    )
    def test_non_positive_policy_rejected(self, field):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: 0})

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, upstream_timeout_seconds=0)

    def test_invalid_status_code_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, circuit_retryable_status_codes=frozenset({700}))

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, upstream_provider="anthropic")

    def test_invalid_rate_policy_rejected(self):
        with pytest.raises(ValidationError):
            RatePolicy(limit=0, window_ms=1000)
