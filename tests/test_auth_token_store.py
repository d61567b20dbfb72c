"""Unit tests for token storage backends."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import json
import time

from unittest.mock import patch

import pytest

from idbridge.auth.token_store import (
    KeyringTokenStore,
    MemoryTokenStore,
    _deserialize_record,
    _serialize_record,
    create_token_store,
)
from idbridge.types import Account, TokenRecord


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def sample_record() -> TokenRecord:
    """Create a sample token record."""
    return TokenRecord(
        account=Account("user-1.tenant-1", "alice@example.com", "tenant-1"),
        scopes=frozenset({"User.Read", "Mail.Read"}),
        access_token="at_test_123",
        expires_at=time.time() + 3600,
        refresh_token="rt_test_456",
        id_token="id_tok",
    )


@pytest.fixture()
def memory_store() -> MemoryTokenStore:
    """Create a MemoryTokenStore."""
    return MemoryTokenStore()


# ── Serialization ───────────────────────────────────────────────────


class TestSerialization:
    """Tests for record serialization helpers."""

    def test_round_trip(self, sample_record: TokenRecord) -> None:
        """Records survive serialize→deserialize unchanged."""
        assert _deserialize_record(_serialize_record(sample_record)) == sample_record

    def test_scopes_sorted_in_json(self, sample_record: TokenRecord) -> None:
        """Scopes are stored as a sorted list."""
        parsed = json.loads(_serialize_record(sample_record))
        assert parsed["scopes"] == ["Mail.Read", "User.Read"]
        assert parsed["account"]["identifier"] == "user-1.tenant-1"

    def test_deserialize_missing_optional_fields(self) -> None:
        """Optional fields default when absent."""
        data = json.dumps(
            {"account": {"identifier": "u"}, "access_token": "at", "expires_at": 10}
        )
        record = _deserialize_record(data)
        assert record.account == Account("u")
        assert record.scopes == frozenset()
        assert record.refresh_token is None
        assert record.expires_at == 10.0


# ── MemoryTokenStore ────────────────────────────────────────────────


class TestMemoryTokenStore:
    """Tests for MemoryTokenStore."""

    def test_save_and_load(
        self, memory_store: MemoryTokenStore, sample_record: TokenRecord
    ) -> None:
        """Save and load round-trip."""
        asyncio.run(memory_store.save("k1", sample_record))
        assert asyncio.run(memory_store.load("k1")) == sample_record

    def test_load_missing(self, memory_store: MemoryTokenStore) -> None:
        """Load returns None for missing key."""
        assert asyncio.run(memory_store.load("nonexistent")) is None

    def test_delete(self, memory_store: MemoryTokenStore, sample_record: TokenRecord) -> None:
        """delete() removes the record; deleting again is harmless."""
        asyncio.run(memory_store.save("k1", sample_record))
        asyncio.run(memory_store.delete("k1"))
        asyncio.run(memory_store.delete("k1"))
        assert asyncio.run(memory_store.load("k1")) is None

    def test_list_keys(self, memory_store: MemoryTokenStore, sample_record: TokenRecord) -> None:
        """list_keys() returns all stored keys."""
        asyncio.run(memory_store.save("a", sample_record))
        asyncio.run(memory_store.save("b", sample_record))
        assert set(asyncio.run(memory_store.list_keys())) == {"a", "b"}

    def test_overwrite(self, memory_store: MemoryTokenStore, sample_record: TokenRecord) -> None:
        """Saving under the same key supersedes the old record."""
        asyncio.run(memory_store.save("k1", sample_record))
        newer = TokenRecord(
            account=sample_record.account,
            scopes=sample_record.scopes,
            access_token="at_new",
            expires_at=sample_record.expires_at + 60,
        )
        asyncio.run(memory_store.save("k1", newer))
        loaded = asyncio.run(memory_store.load("k1"))
        assert loaded is not None
        assert loaded.access_token == "at_new"
        assert asyncio.run(memory_store.list_keys()) == ["k1"]


# ── KeyringTokenStore ───────────────────────────────────────────────


class TestKeyringTokenStore:
    """Tests for KeyringTokenStore with a dict standing in for the OS vault."""

    def test_import_error(self) -> None:
        """Missing keyring raises ImportError."""
        with (
            patch.dict("sys.modules", {"keyring": None}),
            pytest.raises(ImportError, match="keyring"),
        ):
            KeyringTokenStore()

    def test_save_load_delete(self, sample_record: TokenRecord) -> None:
        """Records and the key index live in the keyring."""
        pytest.importorskip("keyring")
        from keyring.errors import PasswordDeleteError

        vault: dict[tuple[str, str], str] = {}

        def set_password(service: str, key: str, value: str) -> None:
            vault[(service, key)] = value

        def get_password(service: str, key: str) -> str | None:
            return vault.get((service, key))

        def delete_password(service: str, key: str) -> None:
            if (service, key) not in vault:
                raise PasswordDeleteError(key)
            del vault[(service, key)]

        with (
            patch("keyring.set_password", side_effect=set_password),
            patch("keyring.get_password", side_effect=get_password),
            patch("keyring.delete_password", side_effect=delete_password),
        ):
            store = KeyringTokenStore(service_name="test-svc")

            async def scenario() -> None:
                await store.save("k1", sample_record)
                await store.save("k2", sample_record)
                assert await store.load("k1") == sample_record
                assert sorted(await store.list_keys()) == ["k1", "k2"]
                await store.delete("k1")
                await store.delete("missing")
                assert await store.load("k1") is None
                assert await store.list_keys() == ["k2"]

            asyncio.run(scenario())

        assert ("test-svc", "k2") in vault
        assert json.loads(vault[("test-svc", "__index__")]) == ["k2"]


# ── create_token_store factory ──────────────────────────────────────


class TestCreateTokenStore:
    """Tests for the create_token_store factory."""

    def test_memory_backend(self) -> None:
        """'memory' returns a MemoryTokenStore."""
        assert isinstance(create_token_store("memory"), MemoryTokenStore)

    def test_default_is_memory(self) -> None:
        """Default backend is memory."""
        assert isinstance(create_token_store(), MemoryTokenStore)

    def test_unknown_backend_raises(self) -> None:
        """Unknown backend raises ValueError."""
        with pytest.raises(ValueError, match="Unknown"):
            create_token_store("nonexistent")
