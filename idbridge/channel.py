"""Method channel exposing the identity client to a host application.

The host's transport delivers calls as ``(method, arguments, result)``.
``initialize`` runs on the calling thread; ``acquireToken``,
``acquireTokenSilent`` and ``logout`` run on a worker pool. Every reply
is posted through one CallbackDispatcher so the host always receives
results on the same context.

Methods and replies:

- ``initialize(clientId, authority?, redirectUrl)`` -> ``True``
- ``acquireToken(scopes)`` -> access token
- ``acquireTokenSilent(scopes)`` -> access token
- ``logout()`` -> ``True``
- anything else -> not implemented
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

from .exceptions import AuthenticationError, AuthFlowCancelled, IdBridgeError
from .log import redact_sensitive_data
from .types import ChannelReply


if TYPE_CHECKING:
    from collections.abc import Callable

    from .client import IdentityClient


logger = logging.getLogger("idbridge.channel")


class MethodResult(ABC):
    """Reply sink for one channel call. Exactly one method is called."""

    @abstractmethod
    def success(self, value: Any) -> None:
        """Deliver a successful result."""

    @abstractmethod
    def error(self, code: str, message: str, details: Any = None) -> None:
        """Deliver an error with a stable code."""

    @abstractmethod
    def not_implemented(self) -> None:
        """Report that the method is unknown."""


class FutureResult(MethodResult):
    """MethodResult that completes a Future with a ChannelReply."""

    def __init__(self, future: Future[ChannelReply] | None = None) -> None:
        self.future: Future[ChannelReply] = future or Future()

    def _set(self, reply: ChannelReply) -> None:
        if self.future.done():
            logger.warning("Reply already delivered; dropping %s", reply.kind.value)
            return
        self.future.set_result(reply)

    def success(self, value: Any) -> None:
        self._set(ChannelReply.success(value))

    def error(self, code: str, message: str, details: Any = None) -> None:
        self._set(ChannelReply.error(code, message, details))

    def not_implemented(self) -> None:
        self._set(ChannelReply.not_implemented())


class CallbackDispatcher:
    """The single context replies are delivered on.

    Parameters
    ----------
    post : callable, optional
        Schedules a zero-argument callable on the host's result context
        (e.g. ``loop.call_soon_threadsafe``). Defaults to a dedicated
        single-thread executor.
    """

    def __init__(self, post: Callable[[Callable[[], None]], Any] | None = None) -> None:
        self._executor: ThreadPoolExecutor | None = None
        if post is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="idbridge-callback"
            )
            post = self._executor.submit
        self._post = post

    def post(self, fn: Callable[[], None]) -> None:
        """Schedule ``fn`` on the delivery context."""
        self._post(fn)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the default executor after delivering pending replies."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)


def _describe_error(exc: IdBridgeError) -> tuple[str, str, Any]:
    """Map an exception to ``(code, message, details)``."""
    if isinstance(exc, AuthFlowCancelled):
        return exc.code, "User cancelled", None
    if isinstance(exc, AuthenticationError):
        return exc.code, "Authentication failed", exc.message
    return exc.code, exc.message, exc.details


class MethodChannel:
    """Dispatches channel calls to an IdentityClient.

    Parameters
    ----------
    client : IdentityClient
        The client the calls operate on.
    dispatcher : CallbackDispatcher, optional
        Where replies are delivered (default: a private delivery thread).
    max_workers : int, optional
        Worker threads for the non-initialize methods (default from
        ``client.settings.channel.max_workers``).
    """

    def __init__(
        self,
        client: IdentityClient,
        dispatcher: CallbackDispatcher | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.client = client
        self.dispatcher = dispatcher or CallbackDispatcher()
        self._workers = ThreadPoolExecutor(
            max_workers=max_workers or client.settings.channel.max_workers,
            thread_name_prefix="idbridge-worker",
        )

    def _reply(self, deliver: Callable[[], None]) -> None:
        self.dispatcher.post(deliver)

    def _reply_error(self, result: MethodResult, exc: IdBridgeError) -> None:
        code, message, details = _describe_error(exc)
        logger.debug("Replying %s: %s", code, message)
        self._reply(lambda: result.error(code, message, details))

    def handle(self, method: str, arguments: dict[str, Any] | None, result: MethodResult) -> None:
        """Handle one call from the host.

        Parameters
        ----------
        method : str
            Method name.
        arguments : dict or None
            Named arguments (``clientId``, ``authority``, ``redirectUrl``,
            ``scopes``).
        result : MethodResult
            Sink the reply is delivered to.
        """
        args = arguments or {}
        logger.debug("Got call %s with %s", method, redact_sensitive_data(args))

        if method == "initialize":
            self._initialize(args, result)
        elif method == "acquireToken":
            self._workers.submit(self._acquire_token, args, result)
        elif method == "acquireTokenSilent":
            self._workers.submit(self._acquire_token_silent, args, result)
        elif method == "logout":
            self._workers.submit(self._logout, result)
        else:
            logger.debug("Method %s is not implemented", method)
            self._reply(result.not_implemented)

    def invoke(self, method: str, arguments: dict[str, Any] | None = None) -> Future[ChannelReply]:
        """Handle a call and return a one-shot Future for its reply."""
        sink = FutureResult()
        self.handle(method, arguments, sink)
        return sink.future

    def _initialize(self, args: dict[str, Any], result: MethodResult) -> None:
        try:
            self.client.initialize(
                args.get("clientId"),
                args.get("authority"),
                args.get("redirectUrl"),
            )
        except IdBridgeError as exc:
            self._reply_error(result, exc)
        except Exception as exc:
            logger.exception("Initialize error")
            detail = str(exc)
            self._reply(lambda: result.error("INIT_ERROR", "Error initializing client", detail))
        else:
            self._reply(lambda: result.success(True))

    def _acquire(self, acquire: Callable[[], Any], result: MethodResult) -> None:
        try:
            record = acquire()
        except IdBridgeError as exc:
            self._reply_error(result, exc)
        except Exception as exc:
            logger.exception("Token acquisition failed")
            detail = str(exc)
            self._reply(lambda: result.error("AUTH_ERROR", "Authentication failed", detail))
        else:
            token = record.access_token
            self._reply(lambda: result.success(token))

    def _acquire_token(self, args: dict[str, Any], result: MethodResult) -> None:
        self._acquire(lambda: self.client.acquire_token(args.get("scopes")), result)

    def _acquire_token_silent(self, args: dict[str, Any], result: MethodResult) -> None:
        self._acquire(lambda: self.client.acquire_token_silent(args.get("scopes")), result)

    def _logout(self, result: MethodResult) -> None:
        self.client.logout()
        self._reply(lambda: result.success(True))

    def close(self, wait: bool = True) -> None:
        """Stop accepting calls and shut the worker pool down."""
        self._workers.shutdown(wait=wait)
        self.dispatcher.shutdown(wait=wait)
