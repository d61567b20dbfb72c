"""Pluggable token storage backends.

Provides TokenStore ABC and concrete implementations for in-memory and
OS keyring-backed persistence of token records.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import threading

from abc import ABC, abstractmethod
from typing import Any

from ..types import Account, TokenRecord


class TokenStore(ABC):
    """Abstract base class for token record storage.

    All methods are async to support both local and OS-backed stores.
    """

    @abstractmethod
    async def save(self, key: str, record: TokenRecord) -> None:
        """Save a record under the given key, replacing any previous one.

        Parameters
        ----------
        key : str
            Cache key (account identifier and scope set).
        record : TokenRecord
            The record to persist.
        """

    @abstractmethod
    async def load(self, key: str) -> TokenRecord | None:
        """Load the record for the given key.

        Returns
        -------
        TokenRecord or None
            The stored record, or None if not found.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete the record for the given key; missing keys are ignored."""

    @abstractmethod
    async def list_keys(self) -> list[str]:
        """List all stored keys."""


def _serialize_record(record: TokenRecord) -> str:
    """Serialize a TokenRecord to JSON."""
    return json.dumps(
        {
            "account": {
                "identifier": record.account.identifier,
                "username": record.account.username,
                "tenant_id": record.account.tenant_id,
            },
            "scopes": sorted(record.scopes),
            "access_token": record.access_token,
            "expires_at": record.expires_at,
            "refresh_token": record.refresh_token,
            "id_token": record.id_token,
        }
    )


def _deserialize_record(data: str) -> TokenRecord:
    """Deserialize a TokenRecord from JSON."""
    obj = json.loads(data)
    account = obj["account"]
    return TokenRecord(
        account=Account(
            identifier=account["identifier"],
            username=account.get("username", ""),
            tenant_id=account.get("tenant_id", ""),
        ),
        scopes=frozenset(obj.get("scopes", [])),
        access_token=obj["access_token"],
        expires_at=float(obj["expires_at"]),
        refresh_token=obj.get("refresh_token"),
        id_token=obj.get("id_token"),
    )


class MemoryTokenStore(TokenStore):
    """In-memory token store for single-process use.

    Thread-safe via asyncio.Lock.
    """

    def __init__(self) -> None:
        """Initialize the memory token store."""
        self._records: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def save(self, key: str, record: TokenRecord) -> None:
        """Save a record in memory."""
        async with self._lock:
            self._records[key] = _serialize_record(record)

    async def load(self, key: str) -> TokenRecord | None:
        """Load a record from memory."""
        async with self._lock:
            data = self._records.get(key)
        if data is None:
            return None
        return _deserialize_record(data)

    async def delete(self, key: str) -> None:
        """Delete a record from memory."""
        async with self._lock:
            self._records.pop(key, None)

    async def list_keys(self) -> list[str]:
        """List all keys in memory."""
        async with self._lock:
            return list(self._records.keys())


class KeyringTokenStore(TokenStore):
    """OS keyring-backed token store for persistent credentials.

    Keyring backends cannot enumerate entries, so the store keeps its
    own key index under a reserved entry.

    Requires the ``keyring`` package: ``pip install idbridge[keyring]``

    Parameters
    ----------
    service_name : str
        Service name for keyring storage (default "idbridge-tokens").
    """

    _INDEX_KEY = "__index__"

    def __init__(self, service_name: str = "idbridge-tokens") -> None:
        """Initialize the keyring token store."""
        try:
            import keyring as _keyring
        except ImportError:
            msg = "Install keyring for persistent token storage: pip install idbridge[keyring]"
            raise ImportError(msg) from None
        self._service_name = service_name
        self._keyring = _keyring
        self._index_lock = threading.Lock()

    async def _call(self, func: Any, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, self._service_name, *args)

    def _read_index(self) -> list[str]:
        data = self._keyring.get_password(self._service_name, self._INDEX_KEY)
        return json.loads(data) if data else []

    def _update_index(self, key: str, present: bool) -> None:
        with self._index_lock:
            keys = self._read_index()
            if present and key not in keys:
                keys.append(key)
            elif not present and key in keys:
                keys.remove(key)
            else:
                return
            self._keyring.set_password(self._service_name, self._INDEX_KEY, json.dumps(keys))

    async def save(self, key: str, record: TokenRecord) -> None:
        """Save a record to the OS keyring."""
        await self._call(self._keyring.set_password, key, _serialize_record(record))
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._update_index, key, True)

    async def load(self, key: str) -> TokenRecord | None:
        """Load a record from the OS keyring."""
        data = await self._call(self._keyring.get_password, key)
        if data is None:
            return None
        return _deserialize_record(data)

    async def delete(self, key: str) -> None:
        """Delete a record from the OS keyring."""
        from keyring.errors import PasswordDeleteError

        with contextlib.suppress(PasswordDeleteError):
            await self._call(self._keyring.delete_password, key)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._update_index, key, False)

    async def list_keys(self) -> list[str]:
        """List keys recorded in the store's index."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read_index)


def create_token_store(backend: str = "memory", **kwargs: Any) -> TokenStore:
    """Factory function for token stores.

    Parameters
    ----------
    backend : str
        Storage backend: "memory" or "keyring".
    **kwargs : Any
        Additional keyword arguments passed to the store constructor.

    Returns
    -------
    TokenStore
        A new token store instance.
    """
    if backend == "memory":
        return MemoryTokenStore()
    if backend == "keyring":
        return KeyringTokenStore(service_name=kwargs.get("service_name", "idbridge-tokens"))
    msg = f"Unknown token store backend: {backend}"
    raise ValueError(msg)
