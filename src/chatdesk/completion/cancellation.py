"""Cancellation token shared between the UI thread and a completion task."""

from __future__ import annotations

import asyncio
import logging
import threading

logger = logging.getLogger(__name__)

__all__ = ["CancellationToken"]


class CancellationToken:
    """Request early termination of an in-flight completion.

    The token is set from the foreground and observed by the request path at
    every suspension point. Observing the request clears it, so a token that
    stopped one request does not stop the next one.
    """

    __slots__ = ("_event", "_lock")

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()

    @property
    def requested(self) -> bool:
        """Return ``True`` while a cancellation request is pending."""

        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation."""

        self._event.set()

    def consume(self) -> bool:
        """Return whether cancellation was requested, clearing the request."""

        with self._lock:
            if not self._event.is_set():
                return False
            self._event.clear()
            return True

    def reset(self) -> None:
        self._event.clear()

    async def wait(self, interval: float) -> None:
        """Poll every *interval* seconds until a cancellation is observed."""

        while not self.consume():
            await asyncio.sleep(interval)
        logger.warning("Request cancelled")
