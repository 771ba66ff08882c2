"""Progress/result channel between a completion task and the UI poll loop."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from collections import deque
from typing import Callable, Optional, Union

from .types import (
    CompletionCancelled,
    CompletionFailure,
    CompletionSuccess,
    ProgressEvent,
    TaskFailure,
    TerminalOutcome,
)

logger = logging.getLogger(__name__)

ProgressHandler = Callable[[ProgressEvent], None]
TerminalHandler = Callable[[TerminalOutcome], None]
TaskFuture = Union[concurrent.futures.Future, asyncio.Future]


class ChannelInactiveError(RuntimeError):
    """Raised when a producer reports into a channel that was never activated."""


class CompletionChannel:
    """Single-producer, single-consumer channel for one chat.

    The producer (a background task) reports progress events and exactly one
    terminal outcome through a :class:`CompletionHandle`. The consumer polls
    without blocking: :meth:`extract` applies buffered progress in arrival
    order and :meth:`Finalizer.finalize` applies the terminal outcome, if
    any, after every progress event sent before it.
    """

    def __init__(self, channel_id: int = 0) -> None:
        self.id = channel_id
        self._lock = threading.Lock()
        self._progress: deque[ProgressEvent] = deque()
        self._terminal: Optional[TerminalOutcome] = None
        self._active = False
        self._generation = 0

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._active

    def activate(self) -> None:
        """Mark an operation as in flight; required before anything is sent."""

        with self._lock:
            self._active = True
            self._generation += 1

    def handle(self) -> "CompletionHandle":
        return CompletionHandle(self)

    def watch(self, future: TaskFuture, turn_index: Optional[int] = None) -> None:
        """Report abnormal termination of the producer task as a terminal outcome.

        Only the operation active when this is called can be finished by it.
        """

        with self._lock:
            generation = self._generation

        def _on_done(done: TaskFuture) -> None:
            if done.cancelled():
                outcome: TerminalOutcome = CompletionCancelled(turn_index)
            else:
                exc = done.exception()
                if exc is None:
                    reason = "finished without reporting an outcome"
                else:
                    logger.error("Completion task failed unexpectedly: %s", exc)
                    reason = str(exc) or type(exc).__name__
                outcome = TaskFailure(
                    f"Background task failed unexpectedly: {reason}", turn_index
                )
            with self._lock:
                if (
                    self._active
                    and self._generation == generation
                    and self._terminal is None
                ):
                    self._terminal = outcome

        future.add_done_callback(_on_done)

    def _push(self, event: ProgressEvent) -> None:
        with self._lock:
            if not self._active:
                raise ChannelInactiveError("channel was not activated")
            self._progress.append(event)

    def _finish(self, outcome: TerminalOutcome) -> None:
        with self._lock:
            if not self._active:
                raise ChannelInactiveError("channel was not activated")
            if self._terminal is not None:
                logger.warning(
                    "Ignoring second terminal outcome %r; already holding %r",
                    outcome,
                    self._terminal,
                )
                return
            self._terminal = outcome

    def extract(self, progress_handler: ProgressHandler) -> "Finalizer":
        """Apply all buffered progress events, oldest first."""

        with self._lock:
            events = list(self._progress)
            self._progress.clear()
        for event in events:
            progress_handler(event)
        return Finalizer(self, progress_handler)

    def _take_terminal(self) -> tuple[list[ProgressEvent], Optional[TerminalOutcome]]:
        with self._lock:
            outcome = self._terminal
            if outcome is None:
                return [], None
            late = list(self._progress)
            self._progress.clear()
            self._terminal = None
            self._active = False
            return late, outcome


class Finalizer:
    """Second phase of a drain: delivers the terminal outcome, if one arrived."""

    def __init__(self, channel: CompletionChannel, progress_handler: ProgressHandler):
        self._channel = channel
        self._progress_handler = progress_handler

    def finalize(self, terminal_handler: TerminalHandler) -> bool:
        """Apply the terminal outcome; return whether one was delivered."""

        # Progress that raced in after `extract` still precedes the terminal.
        late, outcome = self._channel._take_terminal()
        for event in late:
            self._progress_handler(event)
        if outcome is None:
            return False
        terminal_handler(outcome)
        return True


class CompletionHandle:
    """Producer side of a :class:`CompletionChannel`."""

    __slots__ = ("_channel",)

    def __init__(self, channel: CompletionChannel) -> None:
        self._channel = channel

    def activate(self) -> None:
        self._channel.activate()

    def send(self, event: ProgressEvent) -> None:
        self._channel._push(event)

    def success(self, result: Union[CompletionSuccess, CompletionCancelled]) -> None:
        self._channel._finish(result)

    def error(self, result: CompletionFailure) -> None:
        self._channel._finish(result)


__all__ = [
    "ChannelInactiveError",
    "CompletionChannel",
    "CompletionHandle",
    "Finalizer",
    "ProgressHandler",
    "TerminalHandler",
]
