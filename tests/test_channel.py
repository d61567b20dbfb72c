"""Tests for the method channel: dispatch, reply delivery and error codes."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import threading

from typing import Any
from unittest.mock import MagicMock

import pytest

from idbridge.auth.token_store import MemoryTokenStore
from idbridge.channel import CallbackDispatcher, FutureResult, MethodChannel, MethodResult
from idbridge.client import IdentityClient
from idbridge.config import IdBridgeSettings
from idbridge.types import ChannelReply, ReplyKind


TIMEOUT = 10.0


class RecordingResult(MethodResult):
    """MethodResult that records the reply and the thread it arrived on."""

    def __init__(self) -> None:
        self.replies: list[tuple[str, Any]] = []
        self.threads: list[str] = []
        self.done = threading.Event()

    def _record(self, kind: str, payload: Any) -> None:
        self.replies.append((kind, payload))
        self.threads.append(threading.current_thread().name)
        self.done.set()

    def success(self, value: Any) -> None:
        self._record("success", value)

    def error(self, code: str, message: str, details: Any = None) -> None:
        self._record("error", (code, message, details))

    def not_implemented(self) -> None:
        self._record("not_implemented", None)


@pytest.fixture()
def make_channel(provider, scripted_ui):
    """Factory building a MethodChannel over a fresh client."""
    channels: list[MethodChannel] = []

    def factory(outcome: str = "approve") -> MethodChannel:
        client = IdentityClient(
            settings=IdBridgeSettings(),
            ui=scripted_ui(outcome),
            token_store=MemoryTokenStore(),
            transport=provider.transport,
        )
        channel = MethodChannel(client)
        channels.append(channel)
        return channel

    yield factory
    for channel in channels:
        channel.close()
        channel.client.close()


def call(channel: MethodChannel, method: str, arguments: dict | None = None) -> ChannelReply:
    return channel.invoke(method, arguments).result(timeout=TIMEOUT)


INIT_ARGS = {"clientId": "abc", "redirectUrl": "app://redirect"}


class TestInitialize:
    """initialize over the channel."""

    def test_success(self, make_channel) -> None:
        """A valid initialize replies True."""
        reply = call(make_channel(), "initialize", INIT_ARGS)
        assert reply == ChannelReply.success(True)

    def test_idempotent(self, make_channel) -> None:
        """Repeating initialize with the same id also replies True."""
        channel = make_channel()
        call(channel, "initialize", INIT_ARGS)
        assert call(channel, "initialize", INIT_ARGS).ok

    @pytest.mark.parametrize(
        ("arguments", "code", "message"),
        [
            ({"redirectUrl": "app://r"}, "NO_CLIENTID", "Call must include a clientId"),
            ({"clientId": "abc"}, "NO_REDIRECT_URL", "Call must include a redirectUrl"),
            (None, "NO_CLIENTID", "Call must include a clientId"),
        ],
    )
    def test_missing_arguments(self, make_channel, arguments, code, message) -> None:
        """Missing arguments reply with their specific codes."""
        reply = call(make_channel(), "initialize", arguments)
        assert reply.kind is ReplyKind.ERROR
        assert reply.code == code
        assert reply.message == message

    def test_changed_client_id(self, make_channel) -> None:
        """A different client id is rejected and the first stays in force."""
        channel = make_channel()
        call(channel, "initialize", INIT_ARGS)
        reply = call(channel, "initialize", {"clientId": "xyz", "redirectUrl": "app://redirect"})
        assert reply.code == "CHANGED_CLIENTID"
        assert reply.message == "Attempting to initialize with multiple clientIds."
        assert channel.client.config.client_id == "abc"

    def test_bad_authority(self, make_channel) -> None:
        """An unusable authority replies INIT_ERROR with the reason as details."""
        reply = call(make_channel(), "initialize", {**INIT_ARGS, "authority": "ftp://nowhere"})
        assert reply.code == "INIT_ERROR"
        assert reply.message == "Error initializing client"
        assert "ftp://nowhere" in reply.details

    def test_unexpected_failure(self, make_channel) -> None:
        """Unexpected exceptions during initialize become INIT_ERROR."""
        channel = make_channel()
        channel.client = MagicMock()
        channel.client.initialize.side_effect = RuntimeError("boom")
        reply = call(channel, "initialize", INIT_ARGS)
        assert reply.code == "INIT_ERROR"
        assert reply.details == "boom"


class TestAcquireToken:
    """acquireToken and acquireTokenSilent over the channel."""

    def test_no_client(self, make_channel, provider) -> None:
        """Calls before initialize reply NO_CLIENT."""
        channel = make_channel()
        for method in ("acquireToken", "acquireTokenSilent"):
            reply = call(channel, method, {"scopes": ["User.Read"]})
            assert reply.code == "NO_CLIENT"
            assert reply.message.startswith("Client must be initialized")
        assert provider.requests == []

    @pytest.mark.parametrize("scopes", [None, [], "", "   ", 5, [None], [None, ""], [3, 4.5]])
    def test_no_scope(self, make_channel, provider, scopes) -> None:
        """Empty or malformed scopes reply NO_SCOPE without touching the endpoint."""
        channel = make_channel()
        call(channel, "initialize", INIT_ARGS)
        for method in ("acquireToken", "acquireTokenSilent"):
            assert call(channel, method, {"scopes": scopes}).code == "NO_SCOPE"
        assert provider.requests == []

    def test_no_account(self, make_channel) -> None:
        """Silent acquisition with nobody signed in replies NO_ACCOUNT."""
        channel = make_channel()
        call(channel, "initialize", INIT_ARGS)
        reply = call(channel, "acquireTokenSilent", {"scopes": ["User.Read"]})
        assert reply.code == "NO_ACCOUNT"

    def test_interactive_then_silent(self, make_channel, provider) -> None:
        """Both methods reply with the same access token string."""
        channel = make_channel()
        call(channel, "initialize", INIT_ARGS)
        interactive = call(channel, "acquireToken", {"scopes": ["User.Read"]})
        silent = call(channel, "acquireTokenSilent", {"scopes": ["User.Read"]})
        assert interactive == ChannelReply.success("at-1")
        assert silent == ChannelReply.success("at-1")
        assert provider.grants() == ["authorization_code"]

    def test_space_separated_scopes(self, make_channel, provider) -> None:
        """A scope string is split on whitespace."""
        channel = make_channel()
        call(channel, "initialize", INIT_ARGS)
        assert call(channel, "acquireToken", {"scopes": "User.Read Mail.Read"}).ok
        assert "Mail.Read User.Read" in provider.requests[0]["scope"]

    def test_non_string_entries_ignored(self, make_channel, provider) -> None:
        """Only string entries of the scope list are requested."""
        channel = make_channel()
        call(channel, "initialize", INIT_ARGS)
        assert call(channel, "acquireToken", {"scopes": [None, "User.Read", 7]}).ok
        assert "None" not in provider.requests[0]["scope"]
        assert "User.Read" in provider.requests[0]["scope"]

    def test_cancelled(self, make_channel) -> None:
        """A dismissed sign-in replies CANCELLED."""
        channel = make_channel("dismiss")
        call(channel, "initialize", INIT_ARGS)
        reply = call(channel, "acquireToken", {"scopes": ["User.Read"]})
        assert reply == ChannelReply.error("CANCELLED", "User cancelled", None)

    def test_provider_error(self, make_channel, provider) -> None:
        """Provider failures reply AUTH_ERROR with the description as details."""
        provider.error = (
            400,
            {"error": "invalid_grant", "error_description": "AADSTS70000: bad grant"},
        )
        channel = make_channel()
        call(channel, "initialize", INIT_ARGS)
        reply = call(channel, "acquireToken", {"scopes": ["User.Read"]})
        assert reply.code == "AUTH_ERROR"
        assert reply.message == "Authentication failed"
        assert reply.details == "AADSTS70000: bad grant"

    def test_refresh_failure(self, make_channel, provider) -> None:
        """A failed silent refresh replies AUTH_ERROR."""
        provider.expires_in = -10
        channel = make_channel()
        call(channel, "initialize", INIT_ARGS)
        call(channel, "acquireToken", {"scopes": ["User.Read"]})
        provider.error = (400, {"error": "invalid_grant", "error_description": "expired"})
        reply = call(channel, "acquireTokenSilent", {"scopes": ["User.Read"]})
        assert reply.code == "AUTH_ERROR"
        assert reply.details == "expired"


class TestLogoutAndUnknown:
    """logout and unknown methods."""

    def test_logout(self, make_channel) -> None:
        """logout replies True and forgets the account."""
        channel = make_channel()
        call(channel, "initialize", INIT_ARGS)
        call(channel, "acquireToken", {"scopes": ["User.Read"]})
        assert call(channel, "logout") == ChannelReply.success(True)
        assert call(channel, "acquireTokenSilent", {"scopes": ["User.Read"]}).code == "NO_ACCOUNT"

    def test_logout_without_initialize(self, make_channel) -> None:
        """logout succeeds even on an uninitialized client."""
        assert call(make_channel(), "logout").ok

    def test_not_implemented(self, make_channel) -> None:
        """Unknown methods reply not-implemented."""
        reply = call(make_channel(), "getAccounts")
        assert reply.kind is ReplyKind.NOT_IMPLEMENTED
        assert reply.code == "NOT_IMPLEMENTED"


class TestReplyDelivery:
    """Every reply is delivered exactly once on the dispatcher's context."""

    @pytest.mark.parametrize(
        ("method", "arguments"),
        [
            ("initialize", INIT_ARGS),
            ("initialize", {}),
            ("acquireToken", {"scopes": ["User.Read"]}),
            ("acquireTokenSilent", {"scopes": ["User.Read"]}),
            ("logout", None),
            ("unknown", None),
        ],
    )
    def test_replies_on_callback_thread(self, make_channel, method, arguments) -> None:
        """Replies never arrive on the caller or worker threads."""
        channel = make_channel()
        result = RecordingResult()
        channel.handle(method, arguments, result)
        assert result.done.wait(timeout=TIMEOUT)
        assert len(result.replies) == 1
        assert result.threads[0].startswith("idbridge-callback")

    def test_custom_post(self, provider, scripted_ui) -> None:
        """A host-supplied post function receives every reply."""
        posted: list[str] = []

        def post(fn) -> None:
            posted.append(threading.current_thread().name)
            fn()

        client = IdentityClient(
            settings=IdBridgeSettings(),
            ui=scripted_ui(),
            token_store=MemoryTokenStore(),
            transport=provider.transport,
        )
        channel = MethodChannel(client, dispatcher=CallbackDispatcher(post=post))
        try:
            assert call(channel, "initialize", INIT_ARGS).ok
            assert call(channel, "acquireToken", {"scopes": ["User.Read"]}).ok
        finally:
            channel.close()
            client.close()
        assert len(posted) == 2
        assert posted[1].startswith("idbridge-worker")

    def test_future_result_single_shot(self) -> None:
        """A second reply to the same FutureResult is dropped."""
        sink = FutureResult()
        sink.success("first")
        sink.error("AUTH_ERROR", "late")
        assert sink.future.result(timeout=1) == ChannelReply.success("first")
