"""Registry of accounts known to a client."""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import threading

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from ..types import Account


logger = logging.getLogger("idbridge.auth")


class AccountRegistry:
    """Thread-safe, insertion-ordered set of accounts keyed by identifier.

    Adding an account whose identifier is already known replaces the
    stored entry in place, so identifiers are never duplicated.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._accounts)

    def list_accounts(self) -> list[Account]:
        """Return a snapshot of all known accounts, oldest first."""
        with self._lock:
            return list(self._accounts.values())

    def get_account(self, identifier: str) -> Account | None:
        """Look an account up by identifier."""
        with self._lock:
            return self._accounts.get(identifier)

    def first(self) -> Account | None:
        """The earliest registered account, or None when empty."""
        with self._lock:
            return next(iter(self._accounts.values()), None)

    def add(self, account: Account) -> None:
        """Register an account, replacing any entry with the same identifier."""
        with self._lock:
            self._accounts[account.identifier] = account
        logger.debug("Registered account %s", account.identifier)

    def remove_account(self, identifier: str) -> Account | None:
        """Remove an account; unknown identifiers are ignored.

        Returns
        -------
        Account or None
            The removed account, if it was known.
        """
        with self._lock:
            removed = self._accounts.pop(identifier, None)
        if removed is not None:
            logger.debug("Removed account %s", identifier)
        return removed

    def clear(self) -> list[Account]:
        """Remove every account.

        Returns
        -------
        list[Account]
            The accounts that were removed.
        """
        with self._lock:
            removed = list(self._accounts.values())
            self._accounts.clear()
        if removed:
            logger.debug("Cleared %d account(s)", len(removed))
        return removed
