"""Ephemeral localhost HTTP server for authorization redirect capture.

Used with loopback redirect URIs (``http://localhost:<port>/<path>``).
Serves a success/error HTML page and records the redirect's query
string so the flow engine can read ``code``, ``state`` and ``error``.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import html
import logging
import threading

from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse


logger = logging.getLogger("idbridge.auth")

_PAGE_HTML = """<!DOCTYPE html>
<html>
<head><title>{title}</title>
<style>
  body {{ font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f0f2f5; color: #1a1a2e; }}
  .card {{ text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.08); }}
  p {{ color: #666; }}
</style></head>
<body><div class="card">
  <h1>{title}</h1>
  <p>{body}</p>
</div></body></html>"""


def _page(title: str, body: str) -> str:
    return _PAGE_HTML.format(title=title, body=body)


class OAuthCallbackServer:
    """Ephemeral localhost HTTP server for capturing authorization redirects.

    Parameters
    ----------
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Port number (``0`` for auto-assign).
    path : str
        Redirect path to listen on (default ``"/callback"``).
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0, path: str = "/callback") -> None:
        """Initialize the callback server."""
        self._host = host
        self._port = port
        self._path = path or "/"
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._result: dict[str, Any] | None = None
        self._result_event = threading.Event()
        self._actual_port: int = 0

    @classmethod
    def for_redirect_uri(cls, redirect_uri: str) -> OAuthCallbackServer:
        """Create a server listening where ``redirect_uri`` points.

        Raises
        ------
        ValueError
            If the URI is not an ``http`` loopback URI.
        """
        parsed = urlparse(redirect_uri)
        if parsed.scheme != "http" or parsed.hostname not in ("localhost", "127.0.0.1", "::1"):
            msg = f"Redirect URI is not an http loopback URI: {redirect_uri}"
            raise ValueError(msg)
        return cls(host=parsed.hostname, port=parsed.port or 80, path=parsed.path or "/")

    @property
    def redirect_uri(self) -> str:
        """Get the redirect URI for this callback server.

        Returns
        -------
        str
            The full redirect URI (e.g. ``http://127.0.0.1:54321/callback``).
        """
        return f"http://{self._host}:{self._actual_port}{self._path}"

    @property
    def result(self) -> dict[str, Any] | None:
        """The captured redirect parameters, if any."""
        return self._result

    def start(self) -> str:
        """Start the callback server on a daemon thread.

        Returns
        -------
        str
            The redirect URI the server is listening on.
        """
        server_ref = self

        class _CallbackHandler(BaseHTTPRequestHandler):
            """HTTP request handler for authorization redirects."""

            def do_GET(self) -> None:  # noqa: N802
                """Handle GET requests."""
                parsed = urlparse(self.path)

                if parsed.path != server_ref._path:
                    self.send_error(404)
                    return

                params = parse_qs(parsed.query)
                result: dict[str, Any] = {
                    "query": parsed.query,
                    "code": params.get("code", [None])[0],
                    "state": params.get("state", [None])[0],
                    "error": params.get("error", [None])[0],
                    "error_description": params.get("error_description", [None])[0],
                }

                # Only capture the first callback
                if server_ref._result_event.is_set():
                    self._send_html(_page("Authentication Complete", "You can close this window."))
                    return

                server_ref._result = result
                if result["error"]:
                    error_msg = result["error_description"] or result["error"]
                    safe_msg = html.escape(str(error_msg), quote=True)
                    self._send_html(_page("Authentication Failed", safe_msg))
                else:
                    self._send_html(_page("Authentication Complete", "You can close this window."))
                server_ref._result_event.set()

            def _send_html(self, html_content: str) -> None:
                """Send an HTML response with security headers."""
                encoded = html_content.encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.send_header(
                    "Content-Security-Policy",
                    "default-src 'none'; style-src 'unsafe-inline'",
                )
                self.send_header("X-Content-Type-Options", "nosniff")
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, *args: Any) -> None:
                """Redirect HTTP server logging to the idbridge logger."""
                if args:
                    logger.debug("Redirect server: %s", args[0] % args[1:])

        self._server = HTTPServer((self._host, self._port), _CallbackHandler)
        self._actual_port = self._server.server_address[1]

        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

        logger.debug("Redirect server started on %s", self.redirect_uri)
        return self.redirect_uri

    def wait_for_callback(self, timeout: float = 120.0) -> dict[str, Any] | None:
        """Block until the redirect is received or timeout expires.

        Parameters
        ----------
        timeout : float
            Maximum seconds to wait (default 120).

        Returns
        -------
        dict or None
            Redirect parameters (``query``, ``code``, ``state``, ``error``,
            ``error_description``) or ``None`` if timeout expired.
        """
        if self._result_event.wait(timeout=timeout):
            return self._result
        return None

    def stop(self) -> None:
        """Shut the callback server down."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
