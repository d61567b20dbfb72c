"""idbridge exception hierarchy.

All idbridge-specific exceptions inherit from IdBridgeError, enabling
catch-all handling while supporting specific error types. Every class
carries a stable machine-readable ``code`` that the method channel
forwards to the caller unchanged.
"""

from __future__ import annotations

from typing import Any, ClassVar


class IdBridgeError(Exception):
    """Base exception for all idbridge errors."""

    code: ClassVar[str] = "ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize idbridge exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (client_id, method, flow_id, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message

    @property
    def details(self) -> str | None:
        """Extra detail forwarded alongside the message, if any."""
        detail = self.context.get("detail")
        return None if detail is None else str(detail)


class ConfigError(IdBridgeError):
    """Client configuration is missing or conflicting."""

    code = "INIT_ERROR"


class MissingClientIdError(ConfigError):
    """Initialization was attempted without a client id."""

    code = "NO_CLIENTID"


class MissingRedirectUrlError(ConfigError):
    """Initialization was attempted without a redirect URL."""

    code = "NO_REDIRECT_URL"


class ClientIdConflictError(ConfigError):
    """Re-initialization used a client id different from the stored one.

    The stored configuration is left untouched.
    """

    code = "CHANGED_CLIENTID"

    def __init__(
        self,
        message: str,
        current: str | None = None,
        requested: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize client id conflict error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        current : str, optional
            The client id already configured.
        requested : str, optional
            The client id of the rejected call.
        **context : Any
            Additional context.
        """
        super().__init__(message, current=current, requested=requested, **context)
        self.current = current
        self.requested = requested


class InitError(ConfigError):
    """The client could not be created from otherwise complete settings."""

    code = "INIT_ERROR"


class ValidationError(IdBridgeError):
    """Call arguments failed validation."""

    code = "INVALID_ARGUMENT"


class MissingScopeError(ValidationError):
    """A token request carried no scopes."""

    code = "NO_SCOPE"


class StateError(IdBridgeError):
    """Operation is not allowed in the current client state."""

    code = "INVALID_STATE"


class NoClientError(StateError):
    """The client has not been initialized."""

    code = "NO_CLIENT"


class NoAccountError(StateError):
    """Silent acquisition was requested with no known account."""

    code = "NO_ACCOUNT"


class AuthenticationError(IdBridgeError):
    """Base exception for all authentication failures.

    Raised when the identity provider rejects a request, the network
    fails, or the authorization response is malformed. Never retried.
    """

    code = "AUTH_ERROR"

    def __init__(
        self,
        message: str,
        authority: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        authority : str, optional
            The authority URL the request was sent to.
        flow_id : str, optional
            The unique identifier of the auth flow that failed.
        **context : Any
            Additional context.
        """
        super().__init__(message, authority=authority, flow_id=flow_id, **context)
        self.authority = authority
        self.flow_id = flow_id


class AuthFlowCancelled(AuthenticationError):
    """Authentication flow was cancelled.

    Raised when the user dismisses the authorization UI or the flow
    is aborted with ``cancel()``.
    """

    code = "CANCELLED"


class AuthFlowTimeout(AuthenticationError):
    """Authentication flow timed out.

    Raised when the wait for the authorization redirect exceeds the
    configured timeout.
    """

    def __init__(
        self,
        message: str,
        timeout: float,
        authority: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize timeout error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float
            The timeout value in seconds.
        authority : str, optional
            The authority URL.
        flow_id : str, optional
            The unique identifier of the auth flow.
        **context : Any
            Additional context.
        """
        super().__init__(message, authority=authority, flow_id=flow_id, timeout=timeout, **context)
        self.timeout = timeout


class TokenError(AuthenticationError):
    """Base exception for token-related failures.

    Raised when token operations (validation, refresh, exchange) fail.
    """


class TokenRefreshError(TokenError):
    """Token refresh failed.

    Raised when no refresh token is available or the token endpoint
    rejects it.
    """
