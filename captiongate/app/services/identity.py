"""Caller identity resolution.

A caller is identified by its authenticated user id when present, otherwise
by its public network address. Every rate limit and quota key is derived
from :attr:`CallerIdentity.key`.
"""

import hashlib
import hmac
import ipaddress
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Optional, Union

from captiongate.app.core.config import settings

MAX_API_KEY_LENGTH = 512
MAX_IP_LENGTH = 45  # longest textual IPv6 address


@dataclass(frozen=True)
class UserIdentity:
    id: str
    kind: str = "user"

    @property
    def key(self) -> str:
        return f"user:{self.id}"


@dataclass(frozen=True)
class IpIdentity:
    address: str
    kind: str = "ip"

    @property
    def key(self) -> str:
        return f"ip:{self.address}"


@dataclass(frozen=True)
class UnknownIdentity:
    kind: str = "unknown"

    @property
    def key(self) -> str:
        return "unknown"


CallerIdentity = Union[UserIdentity, IpIdentity, UnknownIdentity]


def resolve_identity(user_id: Optional[str], ip: Optional[str]) -> CallerIdentity:
    """Prefer the authenticated user, then the network address."""
    if user_id:
        return UserIdentity(id=user_id)
    if ip:
        return IpIdentity(address=ip)
    return UnknownIdentity()


def _parse_ip(value: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    value = value.strip()
    if not value or len(value) > MAX_IP_LENGTH:
        return None
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return None


def is_public_ip(value: str) -> bool:
    """Check that ``value`` is a syntactically valid, globally routable address.

    Private, loopback, link-local, reserved, multicast and unspecified
    addresses are rejected so proxy headers cannot be spoofed with them.
    """
    addr = _parse_ip(value)
    if addr is None:
        return False
    return not (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_reserved
        or addr.is_multicast
        or addr.is_unspecified
    )


def get_client_ip(headers: Mapping[str, str], peer: Optional[str] = None) -> Optional[str]:
    """Resolve the client address from proxy headers or the socket peer.

    Order: ``CF-Connecting-IP``, first hop of ``X-Forwarded-For``,
    ``X-Real-IP``; header values are only trusted when public. The socket
    peer is used as-is when it parses as an IP address.

    Args:
        headers: Case-insensitive request header mapping
        peer: Socket peer host, if known

    Returns:
        Normalized IP address string or None
    """
    candidates = [headers.get("cf-connecting-ip")]
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        candidates.append(forwarded.split(",")[0])
    candidates.append(headers.get("x-real-ip"))

    for candidate in candidates:
        if candidate and is_public_ip(candidate):
            return str(_parse_ip(candidate))

    if peer:
        addr = _parse_ip(peer)
        if addr is not None:
            return str(addr)
    return None


class Authenticator(ABC):
    """Resolves the authenticated user behind a request, if any."""

    @abstractmethod
    async def authenticate(self, authorization: Optional[str]) -> Optional[str]:
        """Return the user id for an ``Authorization`` header value, or None."""


class StaticTokenAuthenticator(Authenticator):
    """Bearer-token authenticator backed by a token -> user id mapping.

    Tokens are kept only as SHA-256 digests.
    """

    def __init__(self, tokens: Optional[Mapping[str, str]] = None) -> None:
        tokens = settings.auth_tokens if tokens is None else tokens
        self._digests = {self._digest(token): user_id for token, user_id in tokens.items()}

    @staticmethod
    def _digest(token: str) -> str:
        return hashlib.sha256(token.encode()).hexdigest()

    async def authenticate(self, authorization: Optional[str]) -> Optional[str]:
        if not authorization or not authorization.startswith("Bearer "):
            return None
        token = authorization[7:].strip()
        if not token or len(token) > MAX_API_KEY_LENGTH:
            return None
        digest = self._digest(token)
        for known, user_id in self._digests.items():
            if hmac.compare_digest(known, digest):
                return user_id
        return None
