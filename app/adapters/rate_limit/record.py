"""Limiter record: the unit of rate limiting state.

One record exists per distinct identifier, either an IP address or an API
token (never both). Records carry their own block bookkeeping; storage
backends persist them and the decision service mutates request-scoped
copies.
"""

from __future__ import annotations

import ipaddress
import math
from dataclasses import dataclass, replace
from enum import Enum

from app.core.errors import InvalidIdentifierError

KEY_PREFIX = "rate_limiter"


class LimiterKind(str, Enum):
    """What a limiter record is keyed by."""

    IP = "ip"
    TOKEN = "token"

    @classmethod
    def for_request(cls, is_token: bool) -> "LimiterKind":
        return cls.TOKEN if is_token else cls.IP


def normalize_ip(value: str) -> str:
    """Validate an IP literal and return its canonical form.

    Raises:
        InvalidIdentifierError: If the value is not an IPv4/IPv6 literal.
    """
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError as exc:
        raise InvalidIdentifierError(
            code="invalid_ip_address",
            message=f"'{value}' is not a valid IP address",
            details={"kind": LimiterKind.IP.value},
        ) from exc


def build_storage_key(identifier: str, kind: LimiterKind) -> str:
    """Namespaced storage key, e.g. ``rate_limiter:ip:10.0.0.1``.

    The kind segment keeps an IP and a token with the same literal apart.
    """
    return f"{KEY_PREFIX}:{kind.value}:{identifier}"


@dataclass
class LimiterRecord:
    """Fixed-window counter state for one identifier.

    Attributes:
        identifier: Canonical IP literal or opaque token value.
        kind: Whether ``identifier`` is an IP or a token.
        request_count: Requests counted in the current window.
        last_request_time: UNIX seconds of the most recent counted request.
        blocked: Whether the identifier is in its cooldown.
        blocked_until: UNIX seconds when the cooldown ends (None when unblocked).
    """

    identifier: str
    kind: LimiterKind
    request_count: int = 0
    last_request_time: float | None = None
    blocked: bool = False
    blocked_until: float | None = None

    @classmethod
    def create(cls, identifier: str, kind: LimiterKind) -> "LimiterRecord":
        """Create a fresh zero-state record after validating the identifier.

        Raises:
            InvalidIdentifierError: If the identifier is empty or, for IP
                records, not a valid IP literal.
        """
        if not identifier or not identifier.strip():
            raise InvalidIdentifierError(
                code="empty_identifier",
                message="Rate limiter identifier must be a non-empty string",
                details={"kind": kind.value},
            )
        if kind is LimiterKind.IP:
            identifier = normalize_ip(identifier)
        return cls(identifier=identifier, kind=kind)

    @classmethod
    def from_parts(cls, *, ip: str | None = None, token: str | None = None) -> "LimiterRecord":
        """Create a record from an (ip, token) pair where exactly one is set."""
        if bool(ip) == bool(token):
            raise InvalidIdentifierError(
                code="ambiguous_identifier",
                message="Exactly one of ip or token must be provided",
            )
        if token:
            return cls.create(token, LimiterKind.TOKEN)
        return cls.create(ip or "", LimiterKind.IP)

    @property
    def storage_key(self) -> str:
        return build_storage_key(self.identifier, self.kind)

    def block_expired(self, now: float) -> bool:
        """True when a block was set and its deadline has passed."""
        return self.blocked and (self.blocked_until is None or now >= self.blocked_until)

    def is_blocked(self, now: float) -> bool:
        """Whether the cooldown is active at ``now``.

        A lapsed block is cleared as a side effect; the counter is left for
        the caller to reset (check ``block_expired`` first to observe it).
        """
        if not self.blocked:
            return False
        if self.block_expired(now):
            self.blocked = False
            self.blocked_until = None
            return False
        return True

    def block(self, duration: float, now: float) -> None:
        """Start (or extend) the cooldown until ``now + duration``."""
        if duration <= 0:
            raise ValueError("block duration must be > 0")
        self.blocked = True
        self.blocked_until = now + duration

    def reset(self) -> None:
        """Zero the counter and clear block state for a new window."""
        self.request_count = 0
        self.blocked = False
        self.blocked_until = None

    def touch(self, now: float) -> None:
        """Count one request at ``now``."""
        self.request_count += 1
        self.last_request_time = now

    def seconds_until_unblocked(self, now: float) -> int:
        if not self.blocked or self.blocked_until is None:
            return 0
        return max(0, int(math.ceil(self.blocked_until - now)))

    def copy(self) -> "LimiterRecord":
        return replace(self)
