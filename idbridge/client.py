"""Process-wide identity client.

IdentityClient ties the configuration store, account registry, token
cache and interactive flow together behind the four channel
operations. Pass an instance to the method channel; ``get_client()``
returns a shared one with an explicit ``reset_client()`` lifecycle.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import threading

from typing import TYPE_CHECKING

from .auth.accounts import AccountRegistry
from .auth.authority import Authority
from .auth.flow import AuthFlowManager
from .auth.token_cache import TokenCache
from .auth.token_store import create_token_store
from .auth.ui import LoopbackBrowserUI
from .client_config import ConfigurationStore
from .config import get_settings
from .exceptions import MissingScopeError, NoAccountError, NoClientError
from .log import configure_from_settings
from .sync_helpers import run_async
from .types import normalize_scopes


if TYPE_CHECKING:
    from collections.abc import Iterable

    import httpx

    from .auth.token_store import TokenStore
    from .auth.ui import AuthorizationUI
    from .config import IdBridgeSettings
    from .types import Account, ClientConfig, TokenRecord


logger = logging.getLogger("idbridge.client")


class IdentityClient:
    """A public client application: one identity, its accounts and tokens.

    Parameters
    ----------
    settings : IdBridgeSettings, optional
        Settings to use (default: ``get_settings()``).
    ui : AuthorizationUI, optional
        Interactive sign-in surface (default: ``LoopbackBrowserUI``).
    token_store : TokenStore, optional
        Token persistence (default: backend from ``settings.cache``).
    transport : httpx.AsyncBaseTransport, optional
        HTTP transport for the authority endpoints (used by tests).

    Notes
    -----
    The ``log`` section of the settings is applied to the idbridge
    logger when the client is created.
    """

    def __init__(
        self,
        settings: IdBridgeSettings | None = None,
        ui: AuthorizationUI | None = None,
        token_store: TokenStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        configure_from_settings(self.settings.log)
        cache_settings = self.settings.cache
        store = token_store or create_token_store(
            cache_settings.backend,
            service_name=cache_settings.keyring_service_name,
        )
        self.config_store = ConfigurationStore()
        self.accounts = AccountRegistry()
        self.cache = TokenCache(
            store,
            refresh_buffer_seconds=cache_settings.refresh_buffer_seconds,
            extra_scopes=self.settings.flow.extra_scopes,
        )
        self.ui = ui or LoopbackBrowserUI()
        self._transport = transport
        self._authority: Authority | None = None
        self._flow: AuthFlowManager | None = None

    @property
    def config(self) -> ClientConfig | None:
        """The client identity, None before initialization."""
        return self.config_store.config

    @property
    def authority(self) -> Authority | None:
        """Endpoints of the configured authority."""
        return self._authority

    def initialize(
        self,
        client_id: str | None,
        authority: str | None = None,
        redirect_uri: str | None = None,
    ) -> ClientConfig:
        """Fix the client identity; see ``ConfigurationStore.initialize``."""
        config, created = self.config_store.initialize(client_id, authority, redirect_uri)
        if created:
            flow_settings = self.settings.flow
            self._authority = Authority(
                config.authority,
                config.client_id,
                http_timeout=flow_settings.http_timeout_seconds,
                transport=self._transport,
            )
            self._flow = AuthFlowManager(
                authority=self._authority,
                redirect_uri=config.redirect_uri,
                accounts=self.accounts,
                cache=self.cache,
                ui=self.ui,
                single_account=flow_settings.single_account,
                extra_scopes=flow_settings.extra_scopes,
                prompt=flow_settings.prompt,
                auth_timeout=flow_settings.auth_timeout_seconds,
                validate_id_token=flow_settings.validate_id_token,
            )
            self._restore_accounts()
        return config

    def _restore_accounts(self) -> None:
        """Register accounts whose tokens survived in a persistent store."""
        for key in run_async(self.cache.store.list_keys()):
            record = run_async(self.cache.store.load(key))
            if record is not None and self.accounts.get_account(record.account.identifier) is None:
                logger.debug("Restored account %s from token store", record.account.identifier)
                self.accounts.add(record.account)

    def _require_flow(self) -> AuthFlowManager:
        self.config_store.require()
        if self._flow is None:
            msg = "Client must be initialized before attempting to acquire a token."
            raise NoClientError(msg)
        return self._flow

    @staticmethod
    def _require_scopes(scopes: Iterable[str] | str | None) -> frozenset[str]:
        requested = normalize_scopes(scopes)
        if not requested:
            msg = "Call must include a scope"
            raise MissingScopeError(msg)
        return requested

    def acquire_token(
        self,
        scopes: Iterable[str] | str | None,
        login_hint: str | None = None,
    ) -> TokenRecord:
        """Sign in interactively and return the new token record.

        Raises
        ------
        NoClientError
            If the client is not initialized.
        MissingScopeError
            If no scopes were given.
        AuthFlowCancelled
            If the user dismissed the sign-in.
        AuthenticationError
            If the provider rejected the request.
        """
        flow = self._require_flow()
        requested = self._require_scopes(scopes)
        logger.debug("acquire token called")
        return flow.acquire_token_interactive(requested, login_hint=login_hint)

    def acquire_token_silent(
        self,
        scopes: Iterable[str] | str | None,
        force_refresh: bool = False,
    ) -> TokenRecord:
        """Return a token for the first known account without user interaction.

        Raises
        ------
        NoClientError
            If the client is not initialized.
        MissingScopeError
            If no scopes were given.
        NoAccountError
            If no account is known.
        TokenRefreshError
            If the cached token is expired and cannot be refreshed.
        """
        self._require_flow()
        requested = self._require_scopes(scopes)
        account = self.accounts.first()
        if account is None:
            msg = "No account is available to acquire token silently for"
            raise NoAccountError(msg)
        authority = self._authority
        if authority is None:
            msg = "Client must be initialized before attempting to acquire a token."
            raise NoClientError(msg)
        logger.debug("Called acquire token silent")
        return run_async(
            self.cache.acquire_silent(authority, account, requested, force_refresh=force_refresh),
            timeout=authority.http_timeout + 5.0,
        )

    def list_accounts(self) -> list[Account]:
        """All known accounts, oldest first."""
        return self.accounts.list_accounts()

    def remove_account(self, identifier: str) -> None:
        """Forget one account and its tokens; unknown ids are ignored."""
        self.accounts.remove_account(identifier)
        run_async(self.cache.remove_account(identifier))

    def logout(self) -> None:
        """Remove every account and token. Never fails."""
        for account in self.accounts.clear():
            logger.info("Removing old account %s", account.identifier)
        try:
            run_async(self.cache.clear())
        except Exception:
            logger.exception("Clearing the token store failed during logout")

    def cancel(self) -> None:
        """Cancel the interactive sign-in in progress, if any."""
        if self._flow is not None:
            self._flow.cancel()

    def close(self) -> None:
        """Release the HTTP client of the authority."""
        if self._authority is not None:
            run_async(self._authority.close())

    def reset(self) -> None:
        """Return to the uninitialized state, dropping accounts and tokens."""
        self.cancel()
        self.logout()
        self.close()
        self.config_store.reset()
        self._authority = None
        self._flow = None


_client_instance: IdentityClient | None = None
_client_lock = threading.Lock()


def get_client() -> IdentityClient:
    """Return the shared IdentityClient, creating it on first use.

    Call ``reset_client()`` to drop it (e.g. in tests).
    """
    global _client_instance  # noqa: PLW0603

    with _client_lock:
        if _client_instance is None:
            _client_instance = IdentityClient()
        return _client_instance


def reset_client() -> None:
    """Reset and drop the shared IdentityClient."""
    global _client_instance  # noqa: PLW0603

    with _client_lock:
        client = _client_instance
        _client_instance = None
    if client is not None:
        client.reset()
