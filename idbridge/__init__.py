"""idbridge - a self-contained public-client identity library.

Signs users in with the OAuth2 authorization-code + PKCE flow, caches
and refreshes their tokens, and exposes ``initialize``, ``acquireToken``,
``acquireTokenSilent`` and ``logout`` over a method channel.
"""

from __future__ import annotations

__version__ = "0.1.0"

# pylint: disable=wrong-import-position
from .auth import (
    AccountRegistry,
    AuthFlowManager,
    Authority,
    AuthorizationUI,
    CallableUI,
    LoopbackBrowserUI,
    MemoryTokenStore,
    PkceContext,
    TokenCache,
    TokenStore,
)
from .channel import CallbackDispatcher, FutureResult, MethodChannel, MethodResult
from .client import IdentityClient, get_client, reset_client
from .client_config import ConfigurationStore
from .config import IdBridgeSettings, clear_settings, get_settings, reload_settings
from .exceptions import (
    AuthenticationError,
    AuthFlowCancelled,
    AuthFlowTimeout,
    ClientIdConflictError,
    ConfigError,
    IdBridgeError,
    InitError,
    MissingClientIdError,
    MissingRedirectUrlError,
    MissingScopeError,
    NoAccountError,
    NoClientError,
    StateError,
    TokenError,
    TokenRefreshError,
    ValidationError,
)
from .types import (
    Account,
    AuthFlowState,
    ChannelReply,
    ClientConfig,
    OAuthTokenSet,
    ReplyKind,
    TokenRecord,
)


__all__ = [
    "Account",
    "AccountRegistry",
    "AuthFlowCancelled",
    "AuthFlowManager",
    "AuthFlowState",
    "AuthFlowTimeout",
    "AuthenticationError",
    "Authority",
    "AuthorizationUI",
    "CallableUI",
    "CallbackDispatcher",
    "ChannelReply",
    "ClientConfig",
    "ClientIdConflictError",
    "ConfigError",
    "ConfigurationStore",
    "FutureResult",
    "IdBridgeError",
    "IdBridgeSettings",
    "IdentityClient",
    "InitError",
    "LoopbackBrowserUI",
    "MemoryTokenStore",
    "MethodChannel",
    "MethodResult",
    "MissingClientIdError",
    "MissingRedirectUrlError",
    "MissingScopeError",
    "NoAccountError",
    "NoClientError",
    "OAuthTokenSet",
    "PkceContext",
    "ReplyKind",
    "StateError",
    "TokenCache",
    "TokenError",
    "TokenRecord",
    "TokenRefreshError",
    "TokenStore",
    "ValidationError",
    "__version__",
    "clear_settings",
    "get_client",
    "get_settings",
    "reload_settings",
    "reset_client",
]
