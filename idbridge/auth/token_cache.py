"""Token cache with silent acquisition.

Records are keyed by ``(account identifier, scope set)``. A silent
request is served from a valid cached record, or by redeeming the
account's refresh token; the refreshed record replaces the old one.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import contextlib
import logging
import time

from typing import TYPE_CHECKING

from ..exceptions import TokenRefreshError
from ..types import TokenRecord


if TYPE_CHECKING:
    from collections.abc import Iterable

    from ..types import Account, OAuthTokenSet
    from .authority import Authority
    from .token_store import TokenStore


logger = logging.getLogger("idbridge.auth")

_KEY_SEPARATOR = "|"


def cache_key(account_id: str, scopes: Iterable[str]) -> str:
    """Build the store key for an account and scope set."""
    return f"{account_id}{_KEY_SEPARATOR}{' '.join(sorted(scopes))}"


def record_from_tokens(
    account: Account,
    scopes: frozenset[str],
    tokens: OAuthTokenSet,
    previous: TokenRecord | None = None,
) -> TokenRecord:
    """Build a TokenRecord from a token response.

    Refresh and ID tokens missing from the response are carried over
    from ``previous``.
    """
    return TokenRecord(
        account=account,
        scopes=scopes,
        access_token=tokens.access_token,
        expires_at=tokens.expires_at,
        refresh_token=tokens.refresh_token or (previous.refresh_token if previous else None),
        id_token=tokens.id_token or (previous.id_token if previous else None),
    )


class TokenCache:
    """Stores token records and serves silent token requests.

    Parameters
    ----------
    store : TokenStore
        Backend the records are persisted in.
    refresh_buffer_seconds : float
        Access tokens are treated as expired this many seconds before
        their ``expires_at`` (default ``0``).
    extra_scopes : Iterable[str], optional
        OIDC scopes added to refresh requests (``offline_access`` keeps
        the provider issuing refresh tokens).
    """

    def __init__(
        self,
        store: TokenStore,
        refresh_buffer_seconds: float = 0.0,
        extra_scopes: Iterable[str] | None = None,
    ) -> None:
        self.store = store
        self.refresh_buffer_seconds = refresh_buffer_seconds
        self.extra_scopes = frozenset(extra_scopes or ())
        self._locks: dict[str, asyncio.Lock] = {}
        # Bumped by clear(); a refresh that spans one is discarded
        self._cleared = 0

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = self._locks[account_id] = asyncio.Lock()
        return lock

    async def save(self, record: TokenRecord) -> None:
        """Store a record, superseding the one with the same key."""
        await self.store.save(cache_key(record.account.identifier, record.scopes), record)

    async def records_for(self, account_id: str) -> list[TokenRecord]:
        """All records held for an account."""
        prefix = f"{account_id}{_KEY_SEPARATOR}"
        records = []
        for key in await self.store.list_keys():
            if key.startswith(prefix):
                record = await self.store.load(key)
                if record is not None:
                    records.append(record)
        return records

    async def find(self, account: Account, scopes: frozenset[str]) -> TokenRecord | None:
        """Find the record for exactly ``scopes``, else one covering them."""
        exact = await self.store.load(cache_key(account.identifier, scopes))
        if exact is not None:
            return exact
        for record in await self.records_for(account.identifier):
            if record.covers(scopes):
                return record
        return None

    async def remove_account(self, account_id: str) -> None:
        """Delete every record held for an account.

        Waits for a refresh in progress for the account, so its result
        cannot outlive the removal.
        """
        prefix = f"{account_id}{_KEY_SEPARATOR}"
        async with self._lock_for(account_id):
            for key in await self.store.list_keys():
                if key.startswith(prefix):
                    await self.store.delete(key)

    async def clear(self) -> None:
        """Delete every record, after any refresh in progress has finished."""
        async with contextlib.AsyncExitStack() as stack:
            for account_id in sorted(self._locks):
                await stack.enter_async_context(self._locks[account_id])
            self._cleared += 1
            for key in await self.store.list_keys():
                await self.store.delete(key)

    async def acquire_silent(
        self,
        authority: Authority,
        account: Account,
        scopes: frozenset[str],
        force_refresh: bool = False,
    ) -> TokenRecord:
        """Return a valid access token for ``account`` without user interaction.

        Parameters
        ----------
        authority : Authority
            Token endpoint used for refresh-token redemption.
        account : Account
            The account to get a token for.
        scopes : frozenset[str]
            Requested scopes (non-empty).
        force_refresh : bool
            Redeem the refresh token even if the cached token is valid.

        Returns
        -------
        TokenRecord
            The cached record, or the refreshed one that replaced it.

        Raises
        ------
        TokenRefreshError
            If no refresh token is available or the refresh fails.
        """
        async with self._lock_for(account.identifier):
            cached = await self.find(account, scopes)
            if (
                cached is not None
                and not force_refresh
                and not cached.is_expired(time.time(), self.refresh_buffer_seconds)
            ):
                logger.debug("Cache hit for %s", cache_key(account.identifier, cached.scopes))
                return cached

            refresh_token = cached.refresh_token if cached is not None else None
            if not refresh_token:
                refresh_token = next(
                    (
                        r.refresh_token
                        for r in await self.records_for(account.identifier)
                        if r.refresh_token
                    ),
                    None,
                )
            if not refresh_token:
                msg = "No refresh token available; interactive sign-in required"
                raise TokenRefreshError(msg, authority=authority.authority_url)

            target_scopes = cached.scopes if cached is not None else scopes
            logger.info("Refreshing access token for %s", account.identifier)
            cleared = self._cleared
            tokens = await authority.refresh_tokens(
                refresh_token, target_scopes | self.extra_scopes
            )
            if self._cleared != cleared:
                msg = "Account was signed out while its token was being refreshed"
                raise TokenRefreshError(msg, authority=authority.authority_url)
            record = record_from_tokens(account, target_scopes, tokens, previous=cached)
            await self.save(record)
            return record
