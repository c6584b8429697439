"""Tests for caller identity resolution."""

import pytest

from captiongate.app.services.identity import (
    IpIdentity,
    StaticTokenAuthenticator,
    UnknownIdentity,
    UserIdentity,
    get_client_ip,
    is_public_ip,
    resolve_identity,
)


class TestResolveIdentity:
    def test_user_wins_over_ip(self):
        identity = resolve_identity("u1", "1.2.3.4")
        assert identity == UserIdentity("u1")
        assert identity.key == "user:u1"

    def test_ip_when_anonymous(self):
        identity = resolve_identity(None, "1.2.3.4")
        assert identity == IpIdentity("1.2.3.4")
        assert identity.key == "ip:1.2.3.4"

    def test_unknown(self):
        identity = resolve_identity(None, None)
        assert isinstance(identity, UnknownIdentity)
        assert identity.key == "unknown"


class TestIsPublicIp:
    @pytest.mark.parametrize("value", ["1.2.3.4", "8.8.8.8", "2606:4700:4700::1111"])
    def test_public(self, value):
        assert is_public_ip(value) is True

    @pytest.mark.parametrize(
        "value",
        ["10.0.0.1", "192.168.1.1", "127.0.0.1", "169.254.1.1", "::1", "0.0.0.0", "224.0.0.1", "not-an-ip", ""],
    )
    def test_rejected(self, value):
        assert is_public_ip(value) is False

    def test_overlong_value(self):
        assert is_public_ip("1" * 46) is False


class TestGetClientIp:
    def test_cloudflare_header_first(self):
        headers = {"cf-connecting-ip": "1.2.3.4", "x-forwarded-for": "8.8.8.8", "x-real-ip": "9.9.9.9"}
        assert get_client_ip(headers, "127.0.0.1") == "1.2.3.4"

    def test_first_forwarded_hop(self):
        headers = {"x-forwarded-for": "8.8.8.8, 10.0.0.1, 1.1.1.1"}
        assert get_client_ip(headers) == "8.8.8.8"

    def test_real_ip(self):
        assert get_client_ip({"x-real-ip": "9.9.9.9"}) == "9.9.9.9"

    def test_private_header_values_are_ignored(self):
        headers = {"cf-connecting-ip": "10.0.0.1", "x-forwarded-for": "192.168.0.1", "x-real-ip": "8.8.8.8"}
        assert get_client_ip(headers) == "8.8.8.8"

    def test_falls_back_to_peer(self):
        assert get_client_ip({"x-forwarded-for": "garbage"}, "127.0.0.1") == "127.0.0.1"

    def test_invalid_peer(self):
        assert get_client_ip({}, "testclient") is None

    def test_ipv6_is_normalized(self):
        assert get_client_ip({"x-real-ip": "2606:4700:4700:0:0:0:0:1111"}) == "2606:4700:4700::1111"


class TestStaticTokenAuthenticator:
    @pytest.mark.asyncio
    async def test_known_token(self):
        auth = StaticTokenAuthenticator({"secret-token": "u1"})
        assert await auth.authenticate("Bearer secret-token") == "u1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", [None, "", "secret-token", "Basic abc", "Bearer wrong", "Bearer "])
    async def test_rejected(self, header):
        auth = StaticTokenAuthenticator({"secret-token": "u1"})
        assert await auth.authenticate(header) is None

    @pytest.mark.asyncio
    async def test_overlong_token(self):
        token = "x" * 600
        auth = StaticTokenAuthenticator({token: "u1"})
        assert await auth.authenticate(f"Bearer {token}") is None

    def test_tokens_are_not_kept_in_plain_text(self):
        auth = StaticTokenAuthenticator({"secret-token": "u1"})
        assert "secret-token" not in auth._digests
