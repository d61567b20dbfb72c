"""Interactive authorization-code + PKCE flow.

Provides AuthFlowManager, which builds the authorization request,
hands it to an AuthorizationUI, validates the redirect and exchanges
the code for tokens. Runs on a worker thread and blocks until the
user finishes, dismisses the sign-in, or the flow times out.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import secrets
import threading

from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlparse

from ..exceptions import (
    AuthenticationError,
    AuthFlowCancelled,
    AuthFlowTimeout,
    MissingScopeError,
)
from ..sync_helpers import run_async
from ..types import AuthFlowState, normalize_scopes
from .pkce import PkceContext
from .token_cache import record_from_tokens


if TYPE_CHECKING:
    from collections.abc import Iterable

    from ..types import TokenRecord
    from .accounts import AccountRegistry
    from .authority import Authority
    from .token_cache import TokenCache
    from .ui import AuthorizationUI


logger = logging.getLogger("idbridge.auth")


def parse_redirect(redirect_url: str) -> dict[str, str | None]:
    """Extract ``code``, ``state``, ``error`` and ``error_description``."""
    parsed = urlparse(redirect_url)
    params = parse_qs(parsed.query or parsed.fragment)
    return {
        name: params.get(name, [None])[0]
        for name in ("code", "state", "error", "error_description")
    }


class AuthFlowManager:
    """Runs interactive authorization flows for one client.

    Parameters
    ----------
    authority : Authority
        Endpoints of the configured authority.
    redirect_uri : str
        The client's registered redirect URI.
    accounts : AccountRegistry
        Registry the signed-in account is added to.
    cache : TokenCache
        Cache the resulting token record is stored in.
    ui : AuthorizationUI
        Presents the authorization request to the user.
    single_account : bool
        Remove every known account (and its tokens) before signing in
        (default ``True``).
    extra_scopes : Iterable[str], optional
        OIDC scopes added to every authorization request.
    prompt : str
        OIDC ``prompt`` value; empty to omit.
    auth_timeout : float
        Seconds to wait for the redirect (default ``300``).
    validate_id_token : bool
        Verify the ID token signature before trusting its claims.
    """

    def __init__(
        self,
        authority: Authority,
        redirect_uri: str,
        accounts: AccountRegistry,
        cache: TokenCache,
        ui: AuthorizationUI,
        single_account: bool = True,
        extra_scopes: Iterable[str] | None = None,
        prompt: str = "select_account",
        auth_timeout: float = 300.0,
        validate_id_token: bool = False,
    ) -> None:
        """Initialize the auth flow manager."""
        self.authority = authority
        self.redirect_uri = redirect_uri
        self.accounts = accounts
        self.cache = cache
        self.ui = ui
        self.single_account = single_account
        self.extra_scopes = frozenset(extra_scopes or ())
        self.prompt = prompt
        self.auth_timeout = auth_timeout
        self.validate_id_token = validate_id_token

        self._flow_state = AuthFlowState.PENDING
        self._flow_id: str | None = None
        self._pkce: PkceContext | None = None
        self._cancellation_event = threading.Event()
        self._in_flight = threading.Lock()

    @property
    def flow_state(self) -> AuthFlowState:
        """Current state of the most recent flow."""
        return self._flow_state

    @property
    def pkce(self) -> PkceContext | None:
        """PKCE context of the flow in progress, None when idle."""
        return self._pkce

    def _fail(self, message: str) -> AuthenticationError:
        self._flow_state = AuthFlowState.FAILED
        return AuthenticationError(
            message, authority=self.authority.authority_url, flow_id=self._flow_id
        )

    def _drop_accounts(self) -> None:
        for account in self.accounts.clear():
            logger.info("Removing old account %s", account.identifier)
            run_async(self.cache.remove_account(account.identifier))

    def acquire_token_interactive(
        self,
        scopes: Iterable[str],
        login_hint: str | None = None,
    ) -> TokenRecord:
        """Sign the user in and return the resulting token record.

        Parameters
        ----------
        scopes : Iterable[str]
            Scopes to request (non-empty).
        login_hint : str, optional
            Username to pre-fill on the sign-in page.

        Returns
        -------
        TokenRecord
            The stored record for the signed-in account and ``scopes``.

        Raises
        ------
        MissingScopeError
            If ``scopes`` is empty.
        AuthFlowCancelled
            If the user dismissed the sign-in or ``cancel()`` was called.
        AuthFlowTimeout
            If no redirect arrived within ``auth_timeout``.
        AuthenticationError
            If the provider returned an error, the state did not match,
            or the code exchange failed.
        """
        requested = normalize_scopes(scopes)
        if not requested:
            msg = "Call must include a scope"
            raise MissingScopeError(msg)

        if not self._in_flight.acquire(blocking=False):
            msg = "An interactive sign-in is already in progress"
            raise AuthenticationError(msg, authority=self.authority.authority_url)

        try:
            return self._run(requested, login_hint)
        finally:
            self._pkce = None
            self._in_flight.release()

    def _run(self, requested: frozenset[str], login_hint: str | None) -> TokenRecord:  # noqa: C901
        self._flow_id = secrets.token_urlsafe(16)
        self._flow_state = AuthFlowState.IN_PROGRESS
        self._cancellation_event.clear()
        self._pkce = pkce = PkceContext.generate()

        try:
            if self.single_account:
                self._drop_accounts()

            authorize_url = self.authority.build_authorize_url(
                redirect_uri=self.redirect_uri,
                scopes=requested | self.extra_scopes,
                pkce=pkce,
                extra_params={"prompt": self.prompt, "login_hint": login_hint or ""},
            )
            logger.info("Auth flow %s started", self._flow_id)
            logger.debug("Authorization URL: %s", authorize_url)

            try:
                redirect_url = self.ui.present(
                    authorize_url,
                    self.redirect_uri,
                    self._cancellation_event,
                    self.auth_timeout,
                )
            except TimeoutError as exc:
                self._flow_state = AuthFlowState.TIMED_OUT
                msg = f"Authentication timed out after {self.auth_timeout}s"
                raise AuthFlowTimeout(
                    msg,
                    timeout=self.auth_timeout,
                    authority=self.authority.authority_url,
                    flow_id=self._flow_id,
                ) from exc

            if redirect_url is None or self._cancellation_event.is_set():
                self._flow_state = AuthFlowState.CANCELLED
                msg = "User cancelled"
                raise AuthFlowCancelled(
                    msg, authority=self.authority.authority_url, flow_id=self._flow_id
                )

            result = parse_redirect(redirect_url)
            if result["error"]:
                raise self._fail(result["error_description"] or result["error"])
            if result["state"] != pkce.state:
                raise self._fail("State parameter mismatch (possible CSRF attack)")
            code = result["code"]
            if not code:
                raise self._fail("No authorization code in redirect")

            tokens = run_async(
                self.authority.exchange_code(
                    code=code,
                    redirect_uri=self.redirect_uri,
                    pkce_verifier=pkce.verifier,
                    scopes=requested | self.extra_scopes,
                ),
                timeout=self.authority.http_timeout + 5.0,
            )
            account = run_async(
                self.authority.resolve_account(tokens, validate=self.validate_id_token)
            )

            record = record_from_tokens(account, requested, tokens)
            run_async(self.cache.save(record))
            self.accounts.add(account)

            self._flow_state = AuthFlowState.COMPLETED
            logger.info("Auth flow %s completed for %s", self._flow_id, account.identifier)
            return record

        except AuthenticationError:
            if self._flow_state is AuthFlowState.IN_PROGRESS:
                self._flow_state = AuthFlowState.FAILED
            raise
        except Exception as exc:
            self._flow_state = AuthFlowState.FAILED
            msg = f"Authentication flow failed: {exc}"
            raise AuthenticationError(
                msg, authority=self.authority.authority_url, flow_id=self._flow_id
            ) from exc

    def cancel(self) -> None:
        """Cancel the flow in progress, if any.

        The waiting UI observes the cancellation event and the flow
        raises ``AuthFlowCancelled``.
        """
        if self._flow_state is AuthFlowState.IN_PROGRESS:
            self._flow_state = AuthFlowState.CANCELLED
        self._cancellation_event.set()
