"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import os
import threading

from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, parse_qsl, urlencode, urlparse

import httpx
import pytest

from authlib.jose import jwt

from idbridge.auth.ui import AuthorizationUI
from idbridge.client import reset_client
from idbridge.config import clear_settings


if TYPE_CHECKING:
    from collections.abc import Generator


_SIGNING_KEY = "idbridge-test-signing-key-0123456789abcdef"

DEFAULT_CLAIMS = {
    "oid": "user-1",
    "tid": "tenant-1",
    "preferred_username": "alice@example.com",
}


def make_id_token(claims: dict[str, Any]) -> str:
    """Build a JWT carrying ``claims``; the signature is never checked."""
    return jwt.encode({"alg": "HS256"}, claims, _SIGNING_KEY).decode("ascii")


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_environment(
    tmp_path, monkeypatch: pytest.MonkeyPatch
) -> Generator[None, None, None]:
    """Run every test without config files, IDBRIDGE_* variables or shared state."""
    for key in list(os.environ):
        if key.startswith("IDBRIDGE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("APPDATA", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    clear_settings()
    yield
    reset_client()
    clear_settings()


# =============================================================================
# Fake identity provider
# =============================================================================


class FakeProvider:
    """Token endpoint double served through ``httpx.MockTransport``.

    Every successful response issues ``at-<n>`` / ``rt-<n>`` with an ID
    token for ``claims``. Set ``error`` to ``(status, body)`` to fail.
    """

    def __init__(self) -> None:
        self.claims: dict[str, Any] = dict(DEFAULT_CLAIMS)
        self.expires_in = 3600
        self.rotate_refresh_token = True
        self.error: tuple[int, Any] | None = None
        self.routes: dict[str, dict[str, Any]] = {}
        self.requests: list[dict[str, str]] = []
        self.paths: list[str] = []
        self._issued = 0
        self._lock = threading.Lock()

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.paths.append(request.url.path)
            if request.method == "GET":
                body = self.routes.get(str(request.url))
                if body is None:
                    return httpx.Response(404, json={"error": "not_found"})
                return httpx.Response(200, json=body)

            form = dict(parse_qsl(request.content.decode("utf-8")))
            self.requests.append(form)
            if self.error is not None:
                status, body = self.error
                if isinstance(body, str):
                    return httpx.Response(status, text=body)
                return httpx.Response(status, json=body)

            self._issued += 1
            payload: dict[str, Any] = {
                "access_token": f"at-{self._issued}",
                "token_type": "Bearer",
                "expires_in": self.expires_in,
                "scope": form.get("scope", ""),
                "id_token": make_id_token(self.claims),
            }
            if self.rotate_refresh_token:
                payload["refresh_token"] = f"rt-{self._issued}"
            return httpx.Response(200, json=payload)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def grants(self) -> list[str | None]:
        """grant_type of every token request, in order."""
        return [r.get("grant_type") for r in self.requests]


@pytest.fixture()
def provider() -> FakeProvider:
    """A fresh fake identity provider."""
    return FakeProvider()


# =============================================================================
# Fake authorization UI
# =============================================================================


class ScriptedUI(AuthorizationUI):
    """Answers the authorization request without a browser.

    Parameters
    ----------
    outcome : str
        ``"approve"`` echoes the request state with a code, ``"dismiss"``
        returns None, ``"error"`` returns a provider error, ``"wrong_state"``
        returns a code with a foreign state, ``"timeout"`` raises
        TimeoutError and ``"wait"`` blocks until cancelled or released.
    """

    def __init__(self, outcome: str = "approve", code: str = "auth-code") -> None:
        self.outcome = outcome
        self.code = code
        self.calls: list[str] = []
        self.entered = threading.Event()
        self.release = threading.Event()

    def present(
        self,
        authorize_url: str,
        redirect_uri: str,
        cancelled: threading.Event,
        timeout: float,
    ) -> str | None:
        self.calls.append(authorize_url)
        self.entered.set()
        state = parse_qs(urlparse(authorize_url).query)["state"][0]

        if self.outcome == "wait":
            while not self.release.is_set():
                if cancelled.wait(timeout=0.02):
                    return None
            return f"{redirect_uri}?{urlencode({'code': self.code, 'state': state})}"
        if self.outcome == "dismiss":
            return None
        if self.outcome == "timeout":
            msg = f"No redirect received within {timeout}s"
            raise TimeoutError(msg)
        if self.outcome == "error":
            query = {
                "error": "access_denied",
                "error_description": "AADSTS65004: User declined to consent",
                "state": state,
            }
        elif self.outcome == "wrong_state":
            query = {"code": self.code, "state": "forged"}
        else:
            query = {"code": self.code, "state": state}
        return f"{redirect_uri}?{urlencode(query)}"


@pytest.fixture()
def scripted_ui() -> type[ScriptedUI]:
    """The ScriptedUI class, for tests that need a particular outcome."""
    return ScriptedUI


@pytest.fixture()
def id_token_factory():
    """Factory building HS256-signed ID tokens."""
    return make_id_token
