"""Translate SIGINT/SIGTERM into a cancel event for the running transfer pool."""

import asyncio
import logging
import signal
from contextlib import contextmanager
from typing import Iterator, List

logger = logging.getLogger(__name__)


@contextmanager
def cancel_on_signals(cancel_event: asyncio.Event) -> Iterator[asyncio.Event]:
    """Set ``cancel_event`` on SIGINT/SIGTERM while the block runs.

    Must be entered from a coroutine on the running loop. Where the loop
    cannot install handlers (Windows, non-main thread) the block runs
    without them.
    """
    loop = asyncio.get_running_loop()
    installed: List[signal.Signals] = []

    def _signal_handler() -> None:
        if not cancel_event.is_set():
            logger.warning("Received shutdown signal, finishing in-flight transfers...")
        cancel_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            # Windows or non-main thread: no handler support
            pass
    try:
        yield cancel_event
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
