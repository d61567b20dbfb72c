"""Authorization UI collaborators.

The flow engine hands the authorization URL to an ``AuthorizationUI``
and gets back the redirect URL the provider sent the user to, or
``None`` when the user dismissed the sign-in.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import threading
import webbrowser

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

from .callback_server import OAuthCallbackServer


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger("idbridge.auth")


class AuthorizationUI(ABC):
    """Presents an authorization request to the user."""

    @abstractmethod
    def present(
        self,
        authorize_url: str,
        redirect_uri: str,
        cancelled: threading.Event,
        timeout: float,
    ) -> str | None:
        """Show the sign-in and wait for the redirect.

        Parameters
        ----------
        authorize_url : str
            The full authorization request URL.
        redirect_uri : str
            The registered redirect URI the provider will send the user to.
        cancelled : threading.Event
            Set when the flow is cancelled; implementations stop waiting.
        timeout : float
            Maximum seconds to wait for the redirect.

        Returns
        -------
        str or None
            The redirect URL including its query string, or ``None`` if
            the user dismissed the sign-in or the flow was cancelled.

        Raises
        ------
        TimeoutError
            If no redirect arrived within ``timeout``.
        """


class CallableUI(AuthorizationUI):
    """Adapts a plain ``present(url, redirect_uri) -> str | None`` function.

    The function runs on the worker thread of the flow and is expected
    to block until the user finishes. Cancellation is only observed
    before it is called and after it returns.
    """

    def __init__(self, func: Callable[[str, str], str | None]) -> None:
        self._func = func

    def present(
        self,
        authorize_url: str,
        redirect_uri: str,
        cancelled: threading.Event,
        timeout: float,  # noqa: ARG002
    ) -> str | None:
        if cancelled.is_set():
            return None
        redirect = self._func(authorize_url, redirect_uri)
        if cancelled.is_set():
            return None
        return redirect


class LoopbackBrowserUI(AuthorizationUI):
    """Opens the system browser and captures a loopback redirect.

    Requires a redirect URI of the form ``http://localhost:<port>/<path>``.

    Parameters
    ----------
    opener : callable, optional
        Function that opens a URL (default ``webbrowser.open``).
    poll_interval : float
        Seconds between checks of the redirect server and the
        cancellation event (default ``0.1``).
    """

    def __init__(
        self,
        opener: Callable[[str], object] | None = None,
        poll_interval: float = 0.1,
    ) -> None:
        self._opener = opener or webbrowser.open
        self._poll_interval = poll_interval

    def present(
        self,
        authorize_url: str,
        redirect_uri: str,
        cancelled: threading.Event,
        timeout: float,
    ) -> str | None:
        server = OAuthCallbackServer.for_redirect_uri(redirect_uri)
        server.start()
        try:
            logger.info("Opening browser for sign-in")
            self._opener(authorize_url)

            elapsed = 0.0
            while elapsed < timeout:
                if cancelled.is_set():
                    return None
                result = server.wait_for_callback(timeout=self._poll_interval)
                if result is not None:
                    # The captured query already holds any parameters of the redirect URI
                    parts = urlsplit(redirect_uri)
                    return urlunsplit(parts._replace(query=result.get("query", ""), fragment=""))
                elapsed += self._poll_interval
        finally:
            server.stop()

        msg = f"No redirect received within {timeout}s"
        raise TimeoutError(msg)
