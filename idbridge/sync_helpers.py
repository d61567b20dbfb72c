"""Synchronous helpers for the async HTTP and storage layer.

Provides a blocking wrapper that lets worker threads drive the async
token endpoint and token store calls. A single background event loop
persists across calls so the shared ``httpx.AsyncClient`` stays bound
to one loop.
"""

from __future__ import annotations

import asyncio
import threading
import time

from typing import TYPE_CHECKING, Any, TypeVar


if TYPE_CHECKING:
    from collections.abc import Coroutine


T = TypeVar("T")


class _LoopHolder:
    """Holder for the background event loop to avoid global statement."""

    loop: asyncio.AbstractEventLoop | None = None
    thread: threading.Thread | None = None


_holder = _LoopHolder()
_holder_lock = threading.Lock()


def _get_or_create_loop() -> asyncio.AbstractEventLoop:
    """Get or create the background event loop."""
    with _holder_lock:
        if _holder.loop is not None and _holder.loop.is_running():
            return _holder.loop

        _holder.loop = asyncio.new_event_loop()

        def run_loop() -> None:
            loop = _holder.loop
            if loop is not None:
                asyncio.set_event_loop(loop)
                loop.run_forever()

        _holder.thread = threading.Thread(target=run_loop, name="idbridge-loop", daemon=True)
        _holder.thread.start()

        for _ in range(50):  # 500ms max wait
            if _holder.loop.is_running():
                break
            time.sleep(0.01)

        return _holder.loop


def run_async(coro: Coroutine[Any, Any, T], timeout: float | None = 30.0) -> T:
    """Run an async coroutine from sync code.

    NOTE: This function CANNOT be called from a coroutine running on the
    background loop itself - it would deadlock. Use ``await`` there.

    Parameters
    ----------
    coro : Coroutine
        The coroutine to run.
    timeout : float, optional
        Timeout in seconds. Default is 30.0.

    Returns
    -------
    T
        The result of the coroutine.

    Raises
    ------
    TimeoutError
        If the operation times out.
    RuntimeError
        If called from the background loop's own thread.
    """
    loop = _get_or_create_loop()

    try:
        running_loop = asyncio.get_running_loop()
    except RuntimeError:
        running_loop = None

    if running_loop is loop:
        coro.close()
        raise RuntimeError(
            "run_async() cannot be called from the idbridge event loop. "
            "Use 'await' directly instead."
        )

    future = asyncio.run_coroutine_threadsafe(coro, loop)
    return future.result(timeout=timeout)


def shutdown_loop() -> None:
    """Stop the background event loop, if one is running."""
    with _holder_lock:
        loop = _holder.loop
        thread = _holder.thread
        _holder.loop = None
        _holder.thread = None
    if loop is not None and loop.is_running():
        loop.call_soon_threadsafe(loop.stop)
    if thread is not None and thread.is_alive():
        thread.join(timeout=5)
    if loop is not None and not loop.is_running():
        loop.close()
