"""Identity provider endpoints for one authority.

Builds authorization requests and talks to the token endpoint for the
authorization-code and refresh-token grants. Endpoints follow the
Microsoft identity platform v2.0 layout under the authority URL and can
be replaced by OIDC discovery.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time

from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

from authlib.common.encoding import json_loads, to_bytes, urlsafe_b64decode
from authlib.jose import JsonWebKey, JsonWebToken

from ..exceptions import TokenError, TokenRefreshError
from ..types import Account, OAuthTokenSet


if TYPE_CHECKING:
    from collections.abc import Iterable

    from .pkce import PkceContext

logger = logging.getLogger("idbridge.auth")


def decode_id_token_claims(id_token: str) -> dict[str, Any]:
    """Decode the payload of a JWT without verifying its signature.

    Parameters
    ----------
    id_token : str
        The raw ID token.

    Returns
    -------
    dict[str, Any]
        The token claims.

    Raises
    ------
    TokenError
        If the token is not a well-formed JWT.
    """
    parts = id_token.split(".")
    if len(parts) < 2:
        msg = "ID token is not a JWT"
        raise TokenError(msg)
    try:
        claims = json_loads(urlsafe_b64decode(to_bytes(parts[1])))
    except ValueError as exc:
        msg = f"ID token payload is not valid JSON: {exc}"
        raise TokenError(msg) from exc
    if not isinstance(claims, dict):
        msg = "ID token payload is not a JSON object"
        raise TokenError(msg)
    return claims


def account_from_claims(claims: dict[str, Any]) -> Account:
    """Build an Account from ID token claims.

    The identifier is ``<oid>.<tid>`` (falling back to ``sub``) so one
    user signed in to two tenants yields two accounts.
    """
    subject = claims.get("oid") or claims.get("sub")
    if not subject:
        msg = "ID token has neither 'oid' nor 'sub' claim"
        raise TokenError(msg)
    tenant_id = str(claims.get("tid") or "")
    identifier = f"{subject}.{tenant_id}" if tenant_id else str(subject)
    username = (
        claims.get("preferred_username") or claims.get("upn") or claims.get("email") or ""
    )
    return Account(identifier=identifier, username=str(username), tenant_id=tenant_id)


def _provider_error(resp: httpx.Response) -> str:
    """Extract the provider's error description from a failed response."""
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body.get("error_description") or body["error"])
    return f"HTTP {resp.status_code}"


class Authority:
    """Authorize and token endpoints of one identity provider authority.

    Parameters
    ----------
    authority_url : str
        The authority, e.g. ``https://login.microsoftonline.com/common``.
    client_id : str
        The public client's application id.
    http_timeout : float
        Timeout for token endpoint requests (default ``30``).
    transport : httpx.AsyncBaseTransport, optional
        Custom transport for the HTTP client (used by tests).
    """

    def __init__(
        self,
        authority_url: str,
        client_id: str,
        http_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the authority endpoints."""
        self.authority_url = authority_url.rstrip("/")
        self.client_id = client_id
        self.http_timeout = http_timeout
        self.authorize_url = f"{self.authority_url}/oauth2/v2.0/authorize"
        self.token_url = f"{self.authority_url}/oauth2/v2.0/token"
        self.issuer = ""
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None
        self._discovered = False
        self._jwks_uri = ""
        self._jwks_data: dict[str, Any] | None = None

    @property
    def discovery_url(self) -> str:
        """The OIDC discovery document URL for this authority."""
        return f"{self.authority_url}/v2.0/.well-known/openid-configuration"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.http_timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    def build_authorize_url(
        self,
        redirect_uri: str,
        scopes: Iterable[str],
        pkce: PkceContext,
        extra_params: dict[str, str] | None = None,
    ) -> str:
        """Build the full authorization URL.

        Parameters
        ----------
        redirect_uri : str
            The callback URL to redirect to after authorization.
        scopes : Iterable[str]
            Scopes to request; emitted in sorted order.
        pkce : PkceContext
            PKCE challenge and ``state`` of this flow.
        extra_params : dict, optional
            Additional query parameters (``prompt``, ``login_hint``...).

        Returns
        -------
        str
            The full authorization URL.
        """
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(sorted(scopes)),
            "state": pkce.state,
            "code_challenge": pkce.challenge,
            "code_challenge_method": pkce.method,
        }
        if extra_params:
            params.update({k: v for k, v in extra_params.items() if v})
        return f"{self.authorize_url}?{urlencode(params)}"

    async def discover(self) -> None:
        """Replace endpoints with the ones from the OIDC discovery document."""
        if self._discovered:
            return
        try:
            client = await self._get_client()
            resp = await client.get(self.discovery_url, timeout=10.0)
            resp.raise_for_status()
            config = resp.json()
        except httpx.HTTPError as exc:
            logger.warning("OIDC discovery failed for %s: %s", self.authority_url, exc)
            return
        self.authorize_url = config.get("authorization_endpoint", self.authorize_url)
        self.token_url = config.get("token_endpoint", self.token_url)
        self.issuer = config.get("issuer", "")
        self._jwks_uri = config.get("jwks_uri", "")
        self._discovered = True

    async def _fetch_jwks(self) -> dict[str, Any]:
        """Fetch the JWKS key set from the authority."""
        if self._jwks_data is not None:
            return self._jwks_data
        if not self._jwks_uri:
            msg = "JWKS URI not available (discovery failed)"
            raise TokenError(msg, authority=self.authority_url)
        client = await self._get_client()
        resp = await client.get(self._jwks_uri, timeout=10.0)
        resp.raise_for_status()
        self._jwks_data = resp.json()
        return self._jwks_data

    async def validate_id_token(self, id_token: str) -> dict[str, Any]:
        """Validate an ID token's signature, audience and expiry.

        Parameters
        ----------
        id_token : str
            The raw ID token JWT string.

        Returns
        -------
        dict[str, Any]
            The validated claims.

        Raises
        ------
        TokenError
            If validation fails for any reason.
        """
        await self.discover()
        try:
            jwks_data = await self._fetch_jwks()
        except httpx.HTTPError as exc:
            msg = f"Could not fetch signing keys: {exc}"
            raise TokenError(msg, authority=self.authority_url) from exc

        jwt = JsonWebToken(["RS256", "RS384", "RS512", "ES256", "ES384", "ES512"])
        claims_options: dict[str, Any] = {
            "aud": {"essential": True, "value": self.client_id},
            "exp": {"essential": True},
        }
        try:
            key_set = JsonWebKey.import_key_set(jwks_data)
            claims = jwt.decode(id_token, key_set, claims_options=claims_options)
            claims.validate()
        except Exception as exc:
            msg = f"ID token validation failed: {exc}"
            raise TokenError(msg, authority=self.authority_url) from exc
        return dict(claims)

    async def _post_token(self, data: dict[str, str], error_cls: type[TokenError]) -> OAuthTokenSet:
        """POST to the token endpoint and parse the token response."""
        try:
            client = await self._get_client()
            resp = await client.post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            msg = f"Token request to {self.token_url} failed: {exc}"
            raise error_cls(msg, authority=self.authority_url) from exc

        if resp.is_error:
            msg = _provider_error(resp)
            raise error_cls(
                msg,
                authority=self.authority_url,
                status_code=resp.status_code,
                grant_type=data.get("grant_type"),
            )

        try:
            raw = resp.json()
            access_token = raw["access_token"]
        except (ValueError, KeyError, TypeError) as exc:
            msg = "Token endpoint returned a response without an access token"
            raise error_cls(msg, authority=self.authority_url) from exc

        return OAuthTokenSet(
            access_token=access_token,
            token_type=raw.get("token_type", "Bearer"),
            refresh_token=raw.get("refresh_token"),
            expires_in=raw.get("expires_in"),
            id_token=raw.get("id_token"),
            scope=raw.get("scope", ""),
            raw=raw,
            issued_at=time.time(),
        )

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        pkce_verifier: str,
        scopes: Iterable[str],
    ) -> OAuthTokenSet:
        """Exchange an authorization code for tokens.

        Parameters
        ----------
        code : str
            The authorization code from the redirect.
        redirect_uri : str
            The redirect URI used in the authorization request.
        pkce_verifier : str
            The PKCE code verifier of the flow.
        scopes : Iterable[str]
            The scopes that were requested.

        Returns
        -------
        OAuthTokenSet
            The token set from the provider.

        Raises
        ------
        TokenError
            If the code exchange fails.
        """
        data = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": pkce_verifier,
            "scope": " ".join(sorted(scopes)),
        }
        return await self._post_token(data, TokenError)

    async def refresh_tokens(self, refresh_token: str, scopes: Iterable[str]) -> OAuthTokenSet:
        """Redeem a refresh token for a new access token.

        Providers that do not rotate refresh tokens omit one from the
        response; the old refresh token is kept in that case.

        Raises
        ------
        TokenRefreshError
            If the refresh fails.
        """
        data = {
            "grant_type": "refresh_token",
            "client_id": self.client_id,
            "refresh_token": refresh_token,
            "scope": " ".join(sorted(scopes)),
        }
        tokens = await self._post_token(data, TokenRefreshError)
        if not tokens.refresh_token:
            tokens.refresh_token = refresh_token
        return tokens

    async def resolve_account(self, tokens: OAuthTokenSet, validate: bool = False) -> Account:
        """Derive the signed-in Account from a token response.

        Raises
        ------
        TokenError
            If the response carries no usable ID token.
        """
        if not tokens.id_token:
            msg = "Token response has no ID token; include the 'openid' scope"
            raise TokenError(msg, authority=self.authority_url)
        if validate:
            claims = await self.validate_id_token(tokens.id_token)
        else:
            claims = decode_id_token_claims(tokens.id_token)
        return account_from_claims(claims)
