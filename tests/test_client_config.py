"""Unit tests for the client configuration store."""

from __future__ import annotations

import threading

import pytest

from idbridge.client_config import ConfigurationStore
from idbridge.config import DEFAULT_AUTHORITY
from idbridge.exceptions import (
    ClientIdConflictError,
    InitError,
    MissingClientIdError,
    MissingRedirectUrlError,
    NoClientError,
)
from idbridge.types import ClientConfig


class TestInitialize:
    """Tests for ConfigurationStore.initialize."""

    def test_first_initialize(self) -> None:
        """The first call stores the identity and reports creation."""
        store = ConfigurationStore()
        config, created = store.initialize("abc", "https://login.example.com/t1/", "app://r")
        assert created
        assert config == ClientConfig("abc", "https://login.example.com/t1", "app://r")
        assert store.config == config
        assert store.is_initialized

    def test_default_authority(self) -> None:
        """A missing authority falls back to the common endpoint."""
        config, _ = ConfigurationStore().initialize("abc", None, "app://r")
        assert config.authority == DEFAULT_AUTHORITY

    def test_same_client_id_is_idempotent(self) -> None:
        """Repeating initialize with the same id is a no-op."""
        store = ConfigurationStore()
        first, _ = store.initialize("abc", None, "app://r")
        second, created = store.initialize("abc", "https://other.example.com", "app://other")
        assert not created
        assert second is first

    def test_different_client_id_rejected(self) -> None:
        """A second client id fails and the stored config is unchanged."""
        store = ConfigurationStore()
        first, _ = store.initialize("abc", None, "app://r")
        with pytest.raises(ClientIdConflictError) as exc_info:
            store.initialize("xyz", None, "app://r")
        assert exc_info.value.message == "Attempting to initialize with multiple clientIds."
        assert exc_info.value.current == "abc"
        assert exc_info.value.requested == "xyz"
        assert store.config is first

    @pytest.mark.parametrize("client_id", [None, ""])
    def test_missing_client_id(self, client_id) -> None:
        """The client id is required."""
        store = ConfigurationStore()
        with pytest.raises(MissingClientIdError, match="Call must include a clientId"):
            store.initialize(client_id, None, "app://r")
        assert not store.is_initialized

    @pytest.mark.parametrize("redirect", [None, ""])
    def test_missing_redirect(self, redirect) -> None:
        """The redirect URL is required."""
        with pytest.raises(MissingRedirectUrlError, match="Call must include a redirectUrl"):
            ConfigurationStore().initialize("abc", None, redirect)

    def test_client_id_checked_before_redirect(self) -> None:
        """With both missing the client id error wins."""
        with pytest.raises(MissingClientIdError):
            ConfigurationStore().initialize(None, None, None)

    @pytest.mark.parametrize(
        "authority",
        ["not a url", "ftp://login.example.com/t", "http://login.example.com/t"],
    )
    def test_bad_authority(self, authority: str) -> None:
        """Unusable authorities fail with INIT_ERROR and leave the store empty."""
        store = ConfigurationStore()
        with pytest.raises(InitError) as exc_info:
            store.initialize("abc", authority, "app://r")
        assert exc_info.value.message == "Error initializing client"
        assert authority in exc_info.value.details
        assert not store.is_initialized

    def test_loopback_http_authority_allowed(self) -> None:
        """Plain http is accepted for a local test authority."""
        config, _ = ConfigurationStore().initialize("abc", "http://localhost:9000/t", "app://r")
        assert config.authority == "http://localhost:9000/t"

    def test_concurrent_initialize_single_winner(self) -> None:
        """Racing initializers with different ids leave exactly one config."""
        store = ConfigurationStore()
        outcomes: list[str] = []
        lock = threading.Lock()

        def init(client_id: str) -> None:
            try:
                store.initialize(client_id, None, "app://r")
                result = "ok"
            except ClientIdConflictError:
                result = "conflict"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=init, args=(f"id-{i}",)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 7


class TestRequireAndReset:
    """Tests for require() and reset()."""

    def test_require_before_initialize(self) -> None:
        """require() raises NoClientError until initialized."""
        with pytest.raises(NoClientError, match="must be initialized"):
            ConfigurationStore().require()

    def test_reset(self) -> None:
        """reset() allows initializing with a new client id."""
        store = ConfigurationStore()
        store.initialize("abc", None, "app://r")
        store.reset()
        assert store.config is None
        config, created = store.initialize("xyz", None, "app://r")
        assert created
        assert config.client_id == "xyz"
