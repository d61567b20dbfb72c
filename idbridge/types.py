"""Type definitions shared across idbridge.

Client identity, accounts, cached token records, the raw token-endpoint
response, and the tagged reply delivered across the method channel.
"""

from __future__ import annotations

import time

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def normalize_scopes(scopes: Iterable[str] | str | None) -> frozenset[str]:
    """Return the non-blank, whitespace-stripped scopes as a frozenset.

    A string is read as space-separated scopes. Entries that are not
    strings, and values that are not iterable, contribute nothing.
    """
    if isinstance(scopes, str):
        scopes = scopes.split()
    if not isinstance(scopes, Iterable):
        return frozenset()
    return frozenset(s.strip() for s in scopes if isinstance(s, str) and s.strip())


@dataclass(frozen=True)
class ClientConfig:
    """Validated client identity, fixed for the lifetime of a client.

    Attributes
    ----------
    client_id : str
        Application (client) ID registered with the identity provider.
    authority : str
        Authority URL, e.g. ``https://login.microsoftonline.com/<tenant>``.
    redirect_uri : str
        Redirect URI registered for the application.
    """

    client_id: str
    authority: str
    redirect_uri: str


@dataclass(frozen=True)
class Account:
    """A signed-in user as known to the account registry.

    Attributes
    ----------
    identifier : str
        Opaque identifier, stable per user and tenant (``<oid>.<tid>``).
    username : str
        Preferred username (usually the sign-in e-mail/UPN).
    tenant_id : str
        Directory (tenant) the account authenticated against.
    """

    identifier: str
    username: str = ""
    tenant_id: str = ""


@dataclass(frozen=True)
class TokenRecord:
    """Cached tokens for one ``(account, scopes)`` key.

    Attributes
    ----------
    account : Account
        The account the tokens were issued to.
    scopes : frozenset[str]
        Scopes the access token is valid for.
    access_token : str
        Opaque access token.
    expires_at : float
        Unix timestamp after which the access token is no longer used.
    refresh_token : str or None
        Refresh token for silent renewal, if the provider issued one.
    id_token : str or None
        Raw OIDC ID token (JWT), if issued.
    """

    account: Account
    scopes: frozenset[str]
    access_token: str
    expires_at: float
    refresh_token: str | None = None
    id_token: str | None = None

    def is_expired(self, now: float | None = None, buffer_seconds: float = 0.0) -> bool:
        """Check whether the access token is expired at ``now``."""
        current = time.time() if now is None else now
        return current >= self.expires_at - buffer_seconds

    def covers(self, scopes: frozenset[str]) -> bool:
        """True if this record grants at least ``scopes``."""
        return scopes <= self.scopes


@dataclass
class OAuthTokenSet:
    """Token set returned by the token endpoint.

    Attributes
    ----------
    access_token : str
        The access token for API requests.
    token_type : str
        Token type, typically "Bearer".
    refresh_token : str or None
        Optional refresh token for obtaining new access tokens.
    expires_in : int or None
        Token lifetime in seconds from issuance.
    id_token : str or None
        Optional OIDC ID token (JWT).
    scope : str
        Space-separated list of granted scopes.
    raw : dict[str, Any]
        The raw token response from the provider.
    issued_at : float
        Unix timestamp when the token was issued.
    """

    access_token: str
    token_type: str = "Bearer"  # noqa: S105
    refresh_token: str | None = None
    expires_in: int | None = None
    id_token: str | None = None
    scope: str = ""
    raw: dict[str, Any] = field(default_factory=dict)
    issued_at: float = field(default_factory=time.time)

    #: Lifetime assumed when the provider omits ``expires_in``.
    DEFAULT_LIFETIME = 3600

    @property
    def expires_at(self) -> float:
        """Get the expiry timestamp."""
        lifetime = self.expires_in if self.expires_in is not None else self.DEFAULT_LIFETIME
        return self.issued_at + lifetime


class AuthFlowState(str, Enum):
    """State of an interactive authorization flow."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class ReplyKind(str, Enum):
    """Tag of a ChannelReply."""

    SUCCESS = "success"
    ERROR = "error"
    NOT_IMPLEMENTED = "not_implemented"


@dataclass(frozen=True)
class ChannelReply:
    """Result of one method-channel call.

    Attributes
    ----------
    kind : ReplyKind
        Which of success, error or not-implemented this reply is.
    value : Any
        The success value (``True`` or an access token string).
    code : str or None
        Stable machine-readable error code, e.g. ``NO_ACCOUNT``.
    message : str or None
        Human-readable error message.
    details : Any
        Extra error detail, e.g. the provider's description.
    """

    kind: ReplyKind
    value: Any = None
    code: str | None = None
    message: str | None = None
    details: Any = None

    @property
    def ok(self) -> bool:
        """True for a success reply."""
        return self.kind is ReplyKind.SUCCESS

    @classmethod
    def success(cls, value: Any) -> ChannelReply:
        """Build a success reply."""
        return cls(ReplyKind.SUCCESS, value=value)

    @classmethod
    def error(cls, code: str, message: str, details: Any = None) -> ChannelReply:
        """Build an error reply."""
        return cls(ReplyKind.ERROR, code=code, message=message, details=details)

    @classmethod
    def not_implemented(cls) -> ChannelReply:
        """Build the reply for an unknown method."""
        return cls(ReplyKind.NOT_IMPLEMENTED, code="NOT_IMPLEMENTED")
