"""Apply drained channel output to the mutable conversation log."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Protocol, Union

from ..schemas.conversation import AttachmentState, Turn
from .channel import CompletionChannel
from .diagnosis import ALERT_TITLE, diagnose_error
from .types import (
    CompletionCancelled,
    CompletionFailure,
    CompletionSuccess,
    FileUploaded,
    FileUploading,
    ProgressEvent,
    StatusMessage,
    TaskFailure,
    TerminalOutcome,
    TextPart,
)

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AlertSink(Protocol):
    def __call__(self, title: str, body: str, severity: Severity) -> None:
        ...


class ResponsePhase(Enum):
    IDLE = "idle"
    THINKING = "thinking"
    ANSWERING = "answering"


@dataclass
class ResponseContext:
    """Where one logical response is currently being written.

    ``placeholder_index`` is the index the background task reports against;
    ``active_index`` moves to the answer turn after a thought/answer split.
    """

    placeholder_index: int
    active_index: int
    phase: ResponsePhase = ResponsePhase.IDLE

    def indices(self) -> List[int]:
        if self.active_index == self.placeholder_index:
            return [self.placeholder_index]
        return [self.placeholder_index, self.active_index]


class ConversationAssembler:
    """Own the thought/answer state machine for responses in *turns*."""

    def __init__(self, turns: List[Turn], alert: Optional[AlertSink] = None) -> None:
        self.turns = turns
        self._alert = alert
        self._contexts: Dict[int, ResponseContext] = {}

    def begin_response(self, index: int) -> ResponseContext:
        """Register the placeholder turn that a new completion will fill."""

        context = ResponseContext(placeholder_index=index, active_index=index)
        self._contexts[index] = context
        return context

    def _turn(self, index: int) -> Optional[Turn]:
        if 0 <= index < len(self.turns):
            return self.turns[index]
        logger.warning("Dropping update for missing turn %d", index)
        return None

    def _target_index(self, index: int) -> int:
        context = self._contexts.get(index)
        return context.active_index if context is not None else index

    # Progress

    def apply_progress(self, event: ProgressEvent) -> None:
        if isinstance(event, TextPart):
            self._apply_text(event)
        elif isinstance(event, StatusMessage):
            turn = self._turn(self._target_index(event.turn_index))
            if turn is not None:
                turn.status_message = event.text or None
        elif isinstance(event, (FileUploading, FileUploaded)):
            self._update_attachment(event)
        else:
            logger.debug("Ignoring unknown progress event %r", event)

    def _update_attachment(self, event: Union[FileUploading, FileUploaded]) -> None:
        turn = self._turn(event.turn_index)
        if turn is None:
            return
        attachment = turn.find_attachment(event.path)
        if attachment is None:
            logger.debug("No attachment %s on turn %d", event.path, event.turn_index)
            return
        if isinstance(event, FileUploaded):
            logger.info("Updating attachment state to Uploaded for %s", event.path)
            attachment.mark_uploaded(event.remote_file)
        else:
            attachment.mark_uploading()

    def _apply_text(self, event: TextPart) -> None:
        context = self._contexts.get(event.turn_index)
        if context is None:
            context = self.begin_response(event.turn_index)
            current = self._turn(event.turn_index)
            if current is not None and current.is_thought:
                context.phase = ResponsePhase.THINKING

        turn = self._turn(context.active_index)
        if turn is None:
            return
        turn.status_message = None

        if event.is_thought:
            if context.phase is ResponsePhase.IDLE:
                turn.is_thought = True
                context.phase = ResponsePhase.THINKING
            elif context.phase is ResponsePhase.ANSWERING:
                logger.debug("Thought text after the answer started; appending")
            turn.content += event.text
            return

        if context.phase is ResponsePhase.THINKING:
            turn.stop_generating()
            answer = Turn.assistant(event.text, model=turn.model)
            context.active_index += 1
            self.turns.insert(context.active_index, answer)
        else:
            turn.content += event.text
        context.phase = ResponsePhase.ANSWERING

    # Terminal

    def apply_terminal(self, outcome: TerminalOutcome) -> None:
        index = outcome.turn_index
        if index is None:
            index = len(self.turns) - 1
        context = self._contexts.pop(index, None)
        if context is None:
            context = ResponseContext(placeholder_index=index, active_index=index)

        if isinstance(outcome, CompletionSuccess):
            turn = self._turn(context.active_index)
            if turn is not None:
                turn.usage = outcome.usage
            if outcome.cancelled:
                logger.info("Completion for turn %d stopped early", index)
            self._stop(context)
        elif isinstance(outcome, CompletionCancelled):
            logger.info("Completion task for turn %d was cancelled", index)
            self._stop(context)
        elif isinstance(outcome, (CompletionFailure, TaskFailure)):
            self._fail(context, outcome.error_text)
        else:
            logger.warning("Ignoring unknown terminal outcome %r", outcome)
            self._stop(context)

        self._fail_stuck_uploads()

    def _stop(self, context: ResponseContext) -> None:
        for idx in context.indices():
            turn = self._turn(idx)
            if turn is None:
                continue
            if turn.is_generating:
                turn.stop_generating()
            turn.status_message = None

    def _fail(self, context: ResponseContext, raw: str) -> None:
        message = diagnose_error(raw)
        self._stop(context)
        turn = self._turn(context.active_index)
        if turn is not None:
            turn.content = message
            turn.is_error = True
        if self._alert is not None:
            self._alert(ALERT_TITLE, message, Severity.ERROR)

    def _fail_stuck_uploads(self) -> None:
        for turn in self.turns:
            for attachment in turn.attachments:
                if attachment.state is AttachmentState.UPLOADING:
                    attachment.mark_failed()

    def ensure_trailing_stopped(self) -> None:
        if not self.turns:
            return
        last = self.turns[-1]
        if last.is_generating:
            last.stop_generating()

    def drain(self, channel: CompletionChannel) -> bool:
        """Apply everything the channel holds; return whether anything changed."""

        applied = False

        def on_progress(event: ProgressEvent) -> None:
            nonlocal applied
            applied = True
            self.apply_progress(event)

        finished = channel.extract(on_progress).finalize(self.apply_terminal)
        if finished:
            self.ensure_trailing_stopped()
        return applied or finished


__all__ = [
    "AlertSink",
    "ConversationAssembler",
    "ResponseContext",
    "ResponsePhase",
    "Severity",
]
