"""OAuth2 authorization-code + PKCE flow, token cache and account registry.

Provides the authority endpoints, the interactive flow orchestrator,
pluggable token storage with silent refresh, and the account registry.
"""

from __future__ import annotations

from .accounts import AccountRegistry
from .authority import Authority, account_from_claims, decode_id_token_claims
from .callback_server import OAuthCallbackServer
from .flow import AuthFlowManager, parse_redirect
from .pkce import PkceContext, s256_challenge
from .token_cache import TokenCache, cache_key
from .token_store import (
    KeyringTokenStore,
    MemoryTokenStore,
    TokenStore,
    create_token_store,
)
from .ui import AuthorizationUI, CallableUI, LoopbackBrowserUI


__all__ = [
    "AccountRegistry",
    "AuthFlowManager",
    "Authority",
    "AuthorizationUI",
    "CallableUI",
    "KeyringTokenStore",
    "LoopbackBrowserUI",
    "MemoryTokenStore",
    "OAuthCallbackServer",
    "PkceContext",
    "TokenCache",
    "TokenStore",
    "account_from_claims",
    "cache_key",
    "create_token_store",
    "decode_id_token_claims",
    "parse_redirect",
    "s256_challenge",
]
